"""In-memory backend: tables are lists of dict rows.

Useful for tests and for prototyping models before a database exists::

    backend = MemoryBackend()
    backend.add_model(customer_config, rows=[{"id": 1, "name": "James Bond"}])
    repository.register_backend(backend)

Rows are copied on the way in and out, so instances never share state with
the stored table.  Ids are compared by their string form, the same way the
Repository builds its index.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from relmap.backends.base import RepositoryBackend
from relmap.collection import Collection
from relmap.config import ModelConfig
from relmap.errors import DuplicateRecordError, RecordNotFoundError
from relmap.logging import get_logger

logger = get_logger(__name__)


def _where(id: dict[str, Any]) -> str:
    return ", ".join(f"{column}={value}" for column, value in id.items())


class MemoryBackend(RepositoryBackend):
    """Dict-backed tables with auto-increment ids."""

    def __init__(self, identifier: str = "memory") -> None:
        super().__init__(identifier)
        self.tables: dict[str, list[dict[str, Any]]] = {}

    def add_model(
        self,
        config: ModelConfig,
        rows: Iterable[dict[str, Any]] = (),
        table: str | None = None,
        auto_increment: str | None = None,
    ) -> ModelConfig:
        config = super().add_model(config, table, auto_increment)
        self.tables.setdefault(config.backend_config["table"], []).extend(dict(row) for row in rows)
        return config

    def add_junction(
        self,
        name: str,
        id: list[str],
        table: str | None = None,
        rows: Iterable[dict[str, Any]] = (),
    ) -> ModelConfig:
        config = super().add_junction(name, id, table)
        self.tables.setdefault(config.backend_config["table"], []).extend(dict(row) for row in rows)
        return config

    # -- CRUD --------------------------------------------------------------

    def get(self, id: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        table = backend_config["table"]
        logger.debug("memory.get", table=table, id=id)
        position = self._find(table, id)
        if position is None:
            raise RecordNotFoundError(table, _where(id))
        return dict(self.tables[table][position])

    def all(self, backend_config: Any) -> Collection:
        table = backend_config["table"]
        return Collection(lambda: self._scan(table))

    def add(self, data: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        table = backend_config["table"]
        row = dict(data)
        auto_increment = backend_config.get("auto_increment")
        if auto_increment and row.get(auto_increment) is None:
            row[auto_increment] = self._next_id(table, auto_increment)
        id = {column: row.get(column) for column in backend_config["id"]}
        if id and None not in id.values() and self._find(table, id) is not None:
            raise DuplicateRecordError(table, _where(id))
        logger.debug("memory.add", table=table, row=row)
        self.tables.setdefault(table, []).append(row)
        return dict(row)

    def update(self, new: dict[str, Any], old: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        table = backend_config["table"]
        id = self._id_record(backend_config, old)
        position = self._find(table, id)
        if position is None:
            raise RecordNotFoundError(table, _where(id))
        logger.debug("memory.update", table=table, id=id)
        self.tables[table][position].update(new)
        return dict(self.tables[table][position])

    def delete(self, data: dict[str, Any], backend_config: Any) -> None:
        table = backend_config["table"]
        id = self._id_record(backend_config, data)
        position = self._find(table, id)
        if position is None:
            raise RecordNotFoundError(table, _where(id))
        logger.debug("memory.delete", table=table, id=id)
        del self.tables[table][position]

    # -- Internals ---------------------------------------------------------

    def _scan(self, table: str) -> list[dict[str, Any]]:
        logger.debug("memory.scan", table=table)
        return [dict(row) for row in self.tables.get(table, [])]

    def _find(self, table: str, id: dict[str, Any]) -> int | None:
        for position, row in enumerate(self.tables.get(table, [])):
            if all(str(row.get(column)) == str(value) for column, value in id.items()):
                return position
        return None

    def _next_id(self, table: str, column: str) -> int:
        ids = [row[column] for row in self.tables.get(table, []) if isinstance(row.get(column), int)]
        return max(ids, default=0) + 1


__all__ = ["MemoryBackend"]
