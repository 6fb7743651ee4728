"""SQL backend built on SQLAlchemy Core.

Manifesto:
    The Repository only needs raw CRUD over plain records, so this backend
    stays on SQLAlchemy Core with lightweight ``table()`` / ``column()``
    constructs: no metadata, no reflection, no ORM session.  Each backend
    call runs in its own transaction (``engine.begin()``), reads use a plain
    connection.

This module provides:

* ``create_relmap_engine`` -- Create a SA engine from a URL with sane defaults.
* ``DatabaseBackend``      -- CRUD for the models and junctions it serves.
* ``DatabaseCollection``   -- A lazy SELECT; ``where`` / ``select`` /
  ``order_by`` / ``skip`` / ``take`` are compiled into the statement and the
  query runs at most once until ``refresh()``.

Tags:
    relmap, backend, sqlalchemy, sql

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, column, event, literal_column, select, table
from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import delete as _sa_delete
from sqlalchemy import insert as _sa_insert
from sqlalchemy import update as _sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.sql.expression import ColumnElement, TableClause

from relmap.backends.base import RepositoryBackend
from relmap.collection import Collection, KeyedCollection, Selector, split_condition
from relmap.errors import RecordNotFoundError
from relmap.logging import get_logger

if TYPE_CHECKING:
    from relmap.settings import RelmapSettings

logger = get_logger(__name__)

_KEY_LABEL = "__key"


def create_relmap_engine(url: str = "sqlite:///:memory:", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, log all SQL to stdout.
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return _sa_create_engine(url, echo=echo, **kwargs)


def _table(source: str, columns: Any = ()) -> TableClause:
    return table(source, *[column(name) for name in columns])


def _criterion(key: str, value: Any) -> ColumnElement[bool]:
    name, operator = split_condition(key)
    target = column(name)
    if operator == "==":
        return target.is_(None) if value is None else target == value
    if operator == "!=":
        return target.is_not(None) if value is None else target != value
    if operator == "IN":
        return target.in_(list(value))
    if operator == "NOT IN":
        return target.not_in(list(value))
    if operator == "LIKE":
        return target.like(value)
    if operator == "<":
        return target < value
    if operator == "<=":
        return target <= value
    if operator == ">":
        return target > value
    return target >= value


def _id_criteria(id: Mapping[str, Any]) -> ColumnElement[bool]:
    return and_(*[_criterion(name, value) for name, value in id.items()])


def _where(id: Mapping[str, Any]) -> str:
    return ", ".join(f"{name}={value}" for name, value in id.items())


class DatabaseCollection(Collection):
    """A SELECT over one table, built up lazily."""

    def __init__(
        self,
        engine: Engine,
        source: str,
        criteria: tuple[ColumnElement[bool], ...] = (),
        columns: dict[str, str] | None = None,
        order: tuple[Any, ...] = (),
        offset: int | None = None,
        limit: int | None = None,
    ) -> None:
        super().__init__()
        self.engine = engine
        self.source = source
        self._criteria = criteria
        self._columns = columns
        self._order = order
        self._offset = offset
        self._limit = limit

    def _derive(self, **changes: Any) -> DatabaseCollection:
        state = {
            "criteria": self._criteria,
            "columns": self._columns,
            "order": self._order,
            "offset": self._offset,
            "limit": self._limit,
        }
        state.update(changes)
        return DatabaseCollection(self.engine, self.source, **state)

    @property
    def _paged(self) -> bool:
        return self._offset is not None or self._limit is not None

    def statement(self) -> Any:
        """The SELECT this collection runs."""
        if self._columns is None:
            query = select(literal_column("*")).select_from(table(self.source))
        else:
            query = select(*[column(name).label(label) for label, name in self._columns.items()]).select_from(
                table(self.source)
            )
        if self._criteria:
            query = query.where(*self._criteria)
        if self._order:
            query = query.order_by(*self._order)
        if self._offset is not None:
            query = query.offset(self._offset)
        if self._limit is not None:
            query = query.limit(self._limit)
        return query

    def _fetch(self) -> list[Any]:
        if self._rows is None:
            query = self.statement()
            logger.debug("database.select", source=self.source)
            with self.engine.connect() as connection:
                self._rows = [dict(row) for row in connection.execute(query).mappings()]
        return self._rows

    def where(self, conditions: Any) -> Collection:
        if callable(conditions) or self._paged or self._columns is not None:
            return super().where(conditions)
        criteria = tuple(_criterion(key, value) for key, value in conditions.items())
        return self._derive(criteria=self._criteria + criteria)

    def select(self, selector: Selector, key: str | None = None) -> Collection:
        if self._columns is not None:
            return super().select(selector, key)
        if isinstance(selector, str):
            labels = {selector: selector}
        elif isinstance(selector, Mapping):
            labels = dict(selector)
        else:
            labels = {name: name for name in selector}
        fetch = dict(labels)
        if key is not None:
            fetch[_KEY_LABEL] = key
        rows = self._derive(columns=fetch)

        def value(row: dict[str, Any]) -> Any:
            if isinstance(selector, str):
                return row[selector]
            return {label: row[label] for label in labels}

        if key is None:
            return Collection(lambda: [value(row) for row in rows._fetch()])
        return KeyedCollection(lambda: [(row[_KEY_LABEL], value(row)) for row in rows._fetch()])

    def order_by(self, selector: str, reverse: bool = False) -> Collection:
        if self._paged or self._columns is not None:
            return super().order_by(selector, reverse)
        target = column(selector)
        return self._derive(order=self._order + (target.desc() if reverse else target.asc(),))

    def skip(self, offset: int) -> Collection:
        if self._limit is not None:
            return super().skip(offset)
        return self._derive(offset=(self._offset or 0) + offset)

    def take(self, limit: int) -> Collection:
        if self._limit is not None:
            limit = min(limit, self._limit)
        return self._derive(limit=limit)


class DatabaseBackend(RepositoryBackend):
    """Models and junctions stored in SQL tables.

    ``backend_config`` holds the table name, the id columns and the
    auto-increment column (see :meth:`RepositoryBackend.add_model`).
    """

    def __init__(self, engine: Engine, identifier: str = "default") -> None:
        super().__init__(identifier)
        self.engine = engine

    @classmethod
    def from_url(cls, url: str, identifier: str = "default", **engine_kwargs: Any) -> DatabaseBackend:
        return cls(create_relmap_engine(url, **engine_kwargs), identifier)

    @classmethod
    def from_settings(cls, settings: RelmapSettings | None = None, identifier: str = "default") -> DatabaseBackend:
        if settings is None:
            from relmap.settings import RelmapSettings

            settings = RelmapSettings()
        return cls.from_url(settings.database_url, identifier, echo=settings.echo_sql)

    # -- CRUD --------------------------------------------------------------

    def get(self, id: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        source = backend_config["table"]
        query = select(literal_column("*")).select_from(table(source)).where(_id_criteria(id))
        logger.debug("database.get", source=source, id=id)
        with self.engine.connect() as connection:
            row = connection.execute(query).mappings().first()
        if row is None:
            raise RecordNotFoundError(source, _where(id))
        return dict(row)

    def all(self, backend_config: Any) -> DatabaseCollection:
        return DatabaseCollection(self.engine, backend_config["table"])

    def add(self, data: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        source = backend_config["table"]
        auto_increment = backend_config.get("auto_increment")
        values = {name: value for name, value in data.items() if not (name == auto_increment and value is None)}
        columns = list(values)
        if auto_increment and auto_increment not in columns:
            columns.append(auto_increment)
        target = _table(source, columns)
        statement = _sa_insert(target).values(values)
        generate = auto_increment is not None and data.get(auto_increment) is None
        if generate and self.engine.dialect.insert_returning:
            statement = statement.returning(target.c[auto_increment])
        logger.debug("database.add", source=source, columns=sorted(values))
        with self.engine.begin() as connection:
            result = connection.execute(statement)
            row = dict(data)
            if generate:
                row[auto_increment] = (
                    result.scalar_one() if self.engine.dialect.insert_returning else result.lastrowid
                )
        return row

    def update(self, new: dict[str, Any], old: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        source = backend_config["table"]
        changes = {name: value for name, value in new.items() if name not in old or old[name] != value}
        if not changes:
            return {**old, **new}
        id = self._id_record(backend_config, old)
        statement = _sa_update(_table(source, changes)).where(_id_criteria(id)).values(changes)
        logger.debug("database.update", source=source, id=id, columns=sorted(changes))
        with self.engine.begin() as connection:
            result = connection.execute(statement)
        if result.rowcount == 0:
            raise RecordNotFoundError(source, _where(id))
        return {**old, **new}

    def delete(self, data: dict[str, Any], backend_config: Any) -> None:
        source = backend_config["table"]
        id = self._id_record(backend_config, data)
        logger.debug("database.delete", source=source, id=id)
        with self.engine.begin() as connection:
            result = connection.execute(_sa_delete(table(source)).where(_id_criteria(id)))
        if result.rowcount == 0:
            raise RecordNotFoundError(source, _where(id))


__all__ = ["DatabaseBackend", "DatabaseCollection", "create_relmap_engine"]
