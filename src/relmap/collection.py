"""Collections: restartable lazy sequences over backend rows.

Architecture::

    Collection                    rows from a list, or a callable run on first use
    ├── DatabaseCollection        (relmap.backends.database) SELECT built with SQLAlchemy
    └── RepositoryCollection      rows of another Collection bound to a model:
                                  every row becomes a live instance via
                                  Repository.convert()

A Collection fetches its rows once; later passes reuse them.  ``refresh()``
drops the fetched rows so the next pass runs the source again.

Filtering, projection and ordering return new collections:

    ``where(conditions)``     conditions are ``{"path [op]": value}`` mappings
    ``select(selector, key)`` project values (``"name"``, ``["id", "name"]``)
    ``order_by(selector)``, ``skip(n)``, ``take(n)``

Subclasses push these down to their source when they can
(``DatabaseCollection`` into SQL, ``RepositoryCollection`` into the backend
collection after translating property paths to columns); otherwise they are
evaluated client-side.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

from relmap.property_path import PropertyPath

if TYPE_CHECKING:
    from relmap.config import ModelConfig
    from relmap.repository import Repository

OPERATORS = ("NOT IN", "IN", "LIKE", "==", "!=", "<=", ">=", "<", ">")

Conditions = Mapping[str, Any] | Callable[[Any], bool]
Selector = str | list[str] | tuple[str, ...] | Mapping[str, str]


def split_condition(key: str) -> tuple[str, str]:
    """Split ``"path op"`` into ``(path, op)``; the operator defaults to ``==``."""
    stripped = key.strip()
    for operator in OPERATORS:
        if stripped.upper().endswith(" " + operator):
            return stripped[: -len(operator)].rstrip(), operator
    return stripped, "=="


def _like(value: Any, pattern: str) -> bool:
    regex = "".join(
        ".*" if char == "%" else "." if char == "_" else re.escape(char) for char in pattern
    )
    return value is not None and re.fullmatch(regex, str(value), re.IGNORECASE | re.DOTALL) is not None


def compare(value: Any, operator: str, expected: Any) -> bool:
    if operator == "==":
        return value == expected
    if operator == "!=":
        return value != expected
    if operator == "IN":
        return value in expected
    if operator == "NOT IN":
        return value not in expected
    if operator == "LIKE":
        return _like(value, expected)
    if value is None or expected is None:
        return False
    if operator == "<":
        return value < expected
    if operator == "<=":
        return value <= expected
    if operator == ">":
        return value > expected
    if operator == ">=":
        return value >= expected
    raise ValueError(f"Unknown operator: {operator}")


def matches(item: Any, conditions: Conditions) -> bool:
    """Whether *item* satisfies all *conditions*."""
    if callable(conditions):
        return bool(conditions(item))
    for key, expected in conditions.items():
        path, operator = split_condition(key)
        if not compare(PropertyPath.get(item, path), operator, expected):
            return False
    return True


def project(item: Any, selector: Selector) -> Any:
    if isinstance(selector, str):
        return PropertyPath.get(item, selector)
    if isinstance(selector, Mapping):
        return {name: PropertyPath.get(item, path) for name, path in selector.items()}
    return {path: PropertyPath.get(item, path) for path in selector}


class Collection:
    """Lazy, restartable sequence of items."""

    def __init__(self, source: Iterable[Any] | Callable[[], Iterable[Any]] | None = None) -> None:
        self._source = source
        self._rows: list[Any] | None = None

    # -- Rows --------------------------------------------------------------

    def _fetch(self) -> list[Any]:
        if self._rows is None:
            source = self._source() if callable(self._source) else self._source
            self._rows = list(source) if source is not None else []
        return self._rows

    def _current(self, row: Any) -> Any:
        return row

    def refresh(self) -> Collection:
        """Drop fetched rows; the next pass runs the source again."""
        self._rows = None
        return self

    # -- Sequence protocol -------------------------------------------------

    def __iter__(self) -> Iterator[Any]:
        for row in self._fetch():
            yield self._current(row)

    def __len__(self) -> int:
        return len(self._fetch())

    def __bool__(self) -> bool:
        return len(self) > 0

    def __getitem__(self, index: int | slice) -> Any:
        rows = self._fetch()
        if isinstance(index, slice):
            return [self._current(row) for row in rows[index]]
        return self._current(rows[index])

    def __repr__(self) -> str:
        state = "pending" if self._rows is None else f"{len(self._rows)} rows"
        return f"<{type(self).__name__} {state}>"

    # -- Materialization ---------------------------------------------------

    def to_list(self) -> list[Any]:
        return list(self)

    def to_dict(self, key: str | None = None) -> dict[Any, Any]:
        """Items keyed by the value at *key* (or by position)."""
        if key is None:
            return dict(enumerate(self))
        return {PropertyPath.get(item, key): item for item in self}

    def first(self, default: Any = None) -> Any:
        for item in self:
            return item
        return default

    # -- Derived collections -----------------------------------------------

    def where(self, conditions: Conditions) -> Collection:
        return Collection(lambda: [item for item in self if matches(item, conditions)])

    def select(self, selector: Selector, key: str | None = None) -> Collection:
        """Project every item; with *key* the result is keyed (see ``to_dict``)."""
        if key is None:
            return Collection(lambda: [project(item, selector) for item in self])
        return KeyedCollection(lambda: [(PropertyPath.get(item, key), project(item, selector)) for item in self])

    def order_by(self, selector: str, reverse: bool = False) -> Collection:
        return Collection(
            lambda: sorted(self, key=lambda item: PropertyPath.get(item, selector), reverse=reverse)
        )

    def skip(self, offset: int) -> Collection:
        return Collection(lambda: self.to_list()[offset:])

    def take(self, limit: int) -> Collection:
        return Collection(lambda: self.to_list()[:limit])


class KeyedCollection(Collection):
    """Collection of ``(key, value)`` pairs produced by ``select(..., key)``."""

    def _current(self, row: Any) -> Any:
        return row[1]

    def keys(self) -> list[Any]:
        return [row[0] for row in self._fetch()]

    def to_dict(self, key: str | None = None) -> dict[Any, Any]:
        return {row[0]: row[1] for row in self._fetch()}


class RepositoryCollection(Collection):
    """Backend rows bound to a model: iterating yields live instances."""

    def __init__(
        self,
        rows: Collection,
        model: str,
        repository: "Repository",
        preload: bool | int = False,
    ) -> None:
        super().__init__()
        self._backend_rows = rows
        self.model = model
        self.repository = repository
        self.preload = preload

    @property
    def config(self) -> "ModelConfig":
        return self.repository.get_config(self.model)

    def _fetch(self) -> list[Any]:
        return self._backend_rows._fetch()

    def refresh(self) -> RepositoryCollection:
        self._backend_rows.refresh()
        return self

    def _current(self, row: Any) -> Any:
        return self.repository.convert(self.model, row, preload=self.preload)

    def _translate(self, path: str) -> str | None:
        return self.config.column_for(path)

    def where(self, conditions: Conditions) -> Collection:
        if not callable(conditions):
            columns: dict[str, Any] = {}
            for key, value in conditions.items():
                path, operator = split_condition(key)
                column = self._translate(path)
                if column is None:
                    break
                columns[column if operator == "==" else f"{column} {operator}"] = value
            else:
                return RepositoryCollection(
                    self._backend_rows.where(columns), self.model, self.repository, self.preload
                )
        return super().where(conditions)

    def select(self, selector: Selector, key: str | None = None) -> Collection:
        """Project raw values, bypassing the Repository when every path is a column."""
        if isinstance(selector, str):
            translated: Any = self._translate(selector)
            complete = translated is not None
        else:
            items = selector.items() if isinstance(selector, Mapping) else [(p, p) for p in selector]
            translated = {name: self._translate(path) for name, path in items}
            complete = all(column is not None for column in translated.values())
        key_column = self._translate(key) if key is not None else None
        if complete and (key is None or key_column is not None):
            return self._backend_rows.select(translated, key_column)
        return super().select(selector, key)

    def order_by(self, selector: str, reverse: bool = False) -> Collection:
        column = self._translate(selector)
        if column is None:
            return super().order_by(selector, reverse)
        return RepositoryCollection(
            self._backend_rows.order_by(column, reverse), self.model, self.repository, self.preload
        )

    def skip(self, offset: int) -> Collection:
        return RepositoryCollection(self._backend_rows.skip(offset), self.model, self.repository, self.preload)

    def take(self, limit: int) -> Collection:
        return RepositoryCollection(self._backend_rows.take(limit), self.model, self.repository, self.preload)


__all__ = [
    "Collection",
    "KeyedCollection",
    "RepositoryCollection",
    "compare",
    "matches",
    "split_condition",
]
