"""Tests for the SQLAlchemy Core backend against SQLite."""

import pytest

from relmap.backends.database import DatabaseBackend, DatabaseCollection, create_relmap_engine
from relmap.config import ModelConfig
from relmap.errors import RecordNotFoundError
from relmap.settings import RelmapSettings

pytestmark = pytest.mark.integration


@pytest.fixture
def database(engine):
    backend = DatabaseBackend(engine)
    backend.add_model(ModelConfig("Customer", properties={"id": "id", "name": "name", "occupation": "occupation"}, id=["id"]))
    backend.add_junction("memberships", ["customer_id", "club_id"])
    return backend


@pytest.fixture
def customers(database):
    return database.configs["Customer"].backend_config


@pytest.fixture
def memberships(database):
    return database.junctions["memberships"].backend_config


class TestConstruction:
    def test_from_settings(self):
        backend = DatabaseBackend.from_settings(RelmapSettings(_env_file=None, database_url="sqlite://"), "db")
        assert backend.identifier == "db"
        assert backend.engine.url.drivername == "sqlite"

    def test_create_engine_echo(self):
        assert create_relmap_engine("sqlite://", echo=True).echo is True


class TestCrud:
    def test_get(self, database, customers, queries):
        row = database.get({"id": 1}, customers)
        assert row == {"id": 1, "name": "James Bond", "occupation": "Spy"}
        assert len(queries) == 1

    def test_get_missing(self, database, customers):
        with pytest.raises(RecordNotFoundError, match='"customers"'):
            database.get({"id": 99}, customers)

    def test_add_returns_generated_id(self, database, customers):
        row = database.add({"id": None, "name": "Ethan Hunt", "occupation": "Agent"}, customers)
        assert row["id"] == 3
        assert database.get({"id": 3}, customers)["name"] == "Ethan Hunt"

    def test_update_writes_changed_columns(self, database, customers, queries):
        old = database.get({"id": 1}, customers)
        queries.clear()
        database.update({**old, "occupation": "Agent"}, old, customers)
        assert len(queries) == 1
        assert queries[0].startswith("UPDATE customers SET occupation=")
        assert database.get({"id": 1}, customers)["occupation"] == "Agent"

    def test_update_without_changes_is_free(self, database, customers, queries):
        old = database.get({"id": 1}, customers)
        queries.clear()
        database.update(dict(old), old, customers)
        assert queries == []

    def test_delete(self, database, customers):
        database.delete({"id": 2}, customers)
        with pytest.raises(RecordNotFoundError):
            database.get({"id": 2}, customers)
        with pytest.raises(RecordNotFoundError):
            database.delete({"id": 2}, customers)

    def test_junction_rows(self, database, memberships):
        database.add({"customer_id": 2, "club_id": 1, "role": "guest"}, memberships)
        rows = database.related(memberships, "customer_id", 2).order_by("club_id").to_list()
        assert [row["club_id"] for row in rows] == [1, 2]
        database.delete({"customer_id": 2, "club_id": 1, "role": "guest"}, memberships)
        assert len(database.related(memberships, "customer_id", 2)) == 1


class TestDatabaseCollection:
    def test_all_is_a_lazy_select(self, database, customers, queries):
        collection = database.all(customers)
        assert isinstance(collection, DatabaseCollection)
        assert queries == []
        assert len(collection) == 2
        assert len(collection.to_list()) == 2
        assert len(queries) == 1

    def test_where_is_pushed_down(self, database, customers, queries):
        spies = database.all(customers).where({"occupation": "Spy"})
        assert [row["id"] for row in spies] == [1]
        assert "WHERE occupation = ?" in queries[0]

    def test_operators(self, database, customers):
        assert database.all(customers).where({"id IN": [1, 2], "name LIKE": "%Bourne"}).select("id").to_list() == [2]
        assert database.all(customers).where({"id !=": 1}).select("id").to_list() == [2]

    def test_select_columns(self, database, customers):
        assert database.all(customers).select(["id", "name"]).order_by("id").to_list() == [
            {"id": 1, "name": "James Bond"},
            {"id": 2, "name": "Jason Bourne"},
        ]

    def test_select_with_key(self, database, customers):
        assert database.all(customers).select("name", key="id").to_dict() == {1: "James Bond", 2: "Jason Bourne"}

    def test_order_skip_take(self, database, customers, queries):
        names = database.all(customers).order_by("id", reverse=True).skip(1).take(1).select("name").to_list()
        assert names == ["James Bond"]
        assert len(queries) == 1
        assert "LIMIT" in queries[0] and "OFFSET" in queries[0]

    def test_refresh(self, database, customers, queries):
        collection = database.all(customers)
        collection.to_list()
        collection.refresh().to_list()
        assert len(queries) == 2
