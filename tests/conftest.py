"""
Shared pytest fixtures for relmap tests.

This module provides:
- Model configs for the Customer / Order / Club shop used across the suite
- A MemoryBackend that records every backend call
- An in-memory SQLite DatabaseBackend plus a statement counter

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_identity(repository):
        assert repository.get("Customer", 1) is repository.get("Customer", 1)
"""

from collections.abc import Iterator
from typing import Any

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from relmap import BelongsTo, DatabaseBackend, HasMany, MemoryBackend, ModelConfig, RelmapSettings, Repository

# =============================================================================
# Shop data
# =============================================================================

CUSTOMERS = [
    {"id": 1, "name": "James Bond", "occupation": "Spy"},
    {"id": 2, "name": "Jason Bourne", "occupation": "Assassin"},
]

ORDERS = [
    {"id": 1, "product": "Walther PPK", "customer_id": 1},
    {"id": 2, "product": "Spycamera", "customer_id": 1},
    {"id": 3, "product": "Passport", "customer_id": 2},
]

CLUBS = [
    {"id": 1, "title": "MI6"},
    {"id": 2, "title": "Treadstone"},
    {"id": 3, "title": "Double-O"},
]

MEMBERSHIPS = [
    {"customer_id": 1, "club_id": 1, "role": "agent"},
    {"customer_id": 1, "club_id": 3, "role": "member"},
    {"customer_id": 2, "club_id": 2, "role": "asset"},
]

SCHEMA = [
    "CREATE TABLE customers (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT, occupation TEXT)",
    "CREATE TABLE orders (id INTEGER PRIMARY KEY AUTOINCREMENT, product TEXT, customer_id INTEGER)",
    "CREATE TABLE clubs (id INTEGER PRIMARY KEY AUTOINCREMENT, title TEXT)",
    "CREATE TABLE memberships (customer_id INTEGER, club_id INTEGER, role TEXT, PRIMARY KEY (customer_id, club_id))",
]


def customer_config() -> ModelConfig:
    return ModelConfig(
        "Customer",
        properties={"id": "id", "name": "name", "occupation": "occupation"},
        id=["id"],
        has_many={
            "orders": HasMany("Order", reference="customer_id", belongs_to="customer"),
            "clubs": HasMany(
                "Club",
                reference="customer_id",
                through="memberships",
                id="club_id",
                fields={"role": "role"},
                back="members",
            ),
        },
    )


def order_config(default_customer: Any = None) -> ModelConfig:
    return ModelConfig(
        "Order",
        properties={"id": "id", "product": "product"},
        id=["id"],
        belongs_to={"customer": BelongsTo("Customer", reference="customer_id", default=default_customer)},
    )


def club_config() -> ModelConfig:
    return ModelConfig(
        "Club",
        properties={"id": "id", "title": "title"},
        id=["id"],
        has_many={
            "members": HasMany(
                "Customer",
                reference="club_id",
                through="memberships",
                id="customer_id",
                fields={"role": "role"},
                back="clubs",
            ),
        },
    )


# =============================================================================
# Memory backend
# =============================================================================


class RecordingBackend(MemoryBackend):
    """MemoryBackend that logs every call as ``(operation, table)``."""

    def __init__(self, identifier: str = "memory") -> None:
        super().__init__(identifier)
        self.calls: list[tuple[str, str]] = []

    def get(self, id, backend_config):
        self.calls.append(("get", backend_config["table"]))
        return super().get(id, backend_config)

    def add(self, data, backend_config):
        self.calls.append(("add", backend_config["table"]))
        return super().add(data, backend_config)

    def update(self, new, old, backend_config):
        self.calls.append(("update", backend_config["table"]))
        return super().update(new, old, backend_config)

    def delete(self, data, backend_config):
        self.calls.append(("delete", backend_config["table"]))
        return super().delete(data, backend_config)

    def _scan(self, table):
        self.calls.append(("all", table))
        return super()._scan(table)

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in ("add", "update", "delete")]


def build_memory_backend(default_customer: Any = None) -> RecordingBackend:
    backend = RecordingBackend()
    backend.add_model(customer_config(), rows=CUSTOMERS)
    backend.add_model(order_config(default_customer), rows=ORDERS)
    backend.add_model(club_config(), rows=CLUBS)
    backend.add_junction("memberships", ["customer_id", "club_id"], rows=MEMBERSHIPS)
    return backend


@pytest.fixture
def settings() -> RelmapSettings:
    return RelmapSettings(_env_file=None)


@pytest.fixture
def backend() -> RecordingBackend:
    return build_memory_backend()


@pytest.fixture
def repository(backend: RecordingBackend, settings: RelmapSettings) -> Repository:
    repository = Repository(settings)
    repository.register_backend(backend)
    return repository


# =============================================================================
# SQLite backend
# =============================================================================


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    with engine.begin() as connection:
        for statement in SCHEMA:
            connection.execute(text(statement))
        connection.execute(
            text("INSERT INTO customers (id, name, occupation) VALUES (:id, :name, :occupation)"), CUSTOMERS
        )
        connection.execute(text("INSERT INTO orders (id, product, customer_id) VALUES (:id, :product, :customer_id)"), ORDERS)
        connection.execute(text("INSERT INTO clubs (id, title) VALUES (:id, :title)"), CLUBS)
        connection.execute(
            text("INSERT INTO memberships (customer_id, club_id, role) VALUES (:customer_id, :club_id, :role)"),
            MEMBERSHIPS,
        )
    yield engine
    engine.dispose()


@pytest.fixture
def queries(engine: Engine) -> Iterator[list[str]]:
    """SQL statements executed after the fixture data was loaded."""
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine, "before_cursor_execute", _record)


def build_database_backend(engine: Engine, default_customer: Any = None) -> DatabaseBackend:
    backend = DatabaseBackend(engine)
    backend.add_model(customer_config())
    backend.add_model(order_config(default_customer))
    backend.add_model(club_config())
    backend.add_junction("memberships", ["customer_id", "club_id"])
    return backend


@pytest.fixture
def sql_repository(engine: Engine, queries: list[str], settings: RelmapSettings) -> Repository:
    repository = Repository(settings)
    repository.register_backend(build_database_backend(engine))
    return repository


@pytest.fixture
def repository_factory(settings: RelmapSettings):
    """Build a memory-backed Repository, e.g. with an Order default customer."""

    def factory(default_customer: Any = None, **overrides: Any) -> tuple[Repository, RecordingBackend]:
        backend = build_memory_backend(default_customer)
        repository = Repository(settings.model_copy(update=overrides))
        repository.register_backend(backend)
        return repository, backend

    return factory


@pytest.fixture
def sql_repository_factory(engine: Engine, queries: list[str], settings: RelmapSettings):
    def factory(default_customer: Any = None) -> Repository:
        repository = Repository(settings)
        repository.register_backend(build_database_backend(engine, default_customer))
        return repository

    return factory
