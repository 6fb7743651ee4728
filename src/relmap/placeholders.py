"""Lazy stand-ins for relations that haven't been loaded yet.

The Repository installs a placeholder on every relation property of an
instance it converts.  A placeholder holds just enough to perform exactly one
substitution: the repository handle, the owning container and property, and
(for belongsTo) the key of the target.

On first real use it asks the Repository to load the relation, which writes
the real value into the container (self-replacing), and then forwards the
original access.  ``resolve()`` does the same explicitly.

* :class:`BelongsToPlaceholder` answers reads of the key fields it already
  knows (e.g. ``order.customer.id``) without touching the backend.
* :class:`HasManyPlaceholder` supports iteration, ``len()``, indexing and the
  list methods; resolving replaces it with a plain ``list``.

Once replaced, a placeholder still answers reads from the value it resolved
to, but any write through it raises
:class:`~relmap.errors.StalePlaceholderError`; read the property again to get
the real value.  A placeholder whose container no longer holds it (a copied
placeholder, or one reached through a shallow copy of a :class:`~relmap.record.Record`)
raises the same error instead of loading into the wrong object.  A deep copy
of a container copies its placeholders along with it.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from relmap.errors import StalePlaceholderError
from relmap.property_path import PropertyPath

if TYPE_CHECKING:
    from relmap.repository import Repository

_LIST_MUTATORS = frozenset({"append", "extend", "insert", "remove", "pop", "clear", "sort", "reverse"})


class Placeholder:
    """Common behaviour of the relation placeholders."""

    __slots__ = ("_repository", "_owner", "_container", "_property", "_replaced", "_value")

    def __init__(self, repository: "Repository", owner: str, container: Any, property: str) -> None:
        object.__setattr__(self, "_repository", repository)
        object.__setattr__(self, "_owner", owner)
        object.__setattr__(self, "_container", container)
        object.__setattr__(self, "_property", property)
        object.__setattr__(self, "_replaced", False)
        object.__setattr__(self, "_value", None)

    def resolve(self) -> Any:
        """Load the relation, replace this placeholder and return the real value."""
        if self._replaced:
            return self._value
        if PropertyPath.get(self._container, self._property) is not self:
            raise StalePlaceholderError(
                f'This placeholder belongs to another object (property "{self._property}")'
            ).with_context(model=self._owner, property=self._property)
        value = self._repository.load_association(self._owner, self._container, self._property)
        object.__setattr__(self, "_value", value)
        object.__setattr__(self, "_replaced", True)
        return value

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        return getattr(self.resolve(), name)

    def __setattr__(self, name: str, value: Any) -> None:
        self._check_writable()
        setattr(self.resolve(), name, value)

    def __delattr__(self, name: str) -> None:
        self._check_writable()
        delattr(self.resolve(), name)

    def _check_writable(self) -> None:
        if self._replaced:
            raise StalePlaceholderError(
                f'This placeholder is already replaced (property "{self._property}")'
            ).with_context(model=self._owner, property=self._property)

    def __copy__(self) -> Placeholder:
        clone = object.__new__(type(self))
        for slot in _all_slots(type(self)):
            object.__setattr__(clone, slot, object.__getattribute__(self, slot))
        return clone

    def __deepcopy__(self, memo: dict[int, Any]) -> Placeholder:
        clone = self.__copy__()
        memo[id(self)] = clone
        # The container copy is already in the memo when it is the one being copied
        object.__setattr__(clone, "_container", copy.deepcopy(self._container, memo))
        if self._replaced:
            object.__setattr__(clone, "_value", copy.deepcopy(self._value, memo))
        return clone


class BelongsToPlaceholder(Placeholder):
    """Placeholder for a belongsTo relation."""

    __slots__ = ("_model", "_fields")

    def __init__(
        self,
        repository: "Repository",
        owner: str,
        container: Any,
        property: str,
        model: str,
        fields: dict[str, Any],
    ) -> None:
        super().__init__(repository, owner, container, property)
        object.__setattr__(self, "_model", model)
        object.__setattr__(self, "_fields", dict(fields))

    def peek(self, name: str) -> Any:
        """Read a known key field without resolving."""
        return self._fields[name]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        fields = object.__getattribute__(self, "_fields")
        if name in fields:
            return fields[name]
        return getattr(self.resolve(), name)

    def __repr__(self) -> str:
        return f"<BelongsToPlaceholder {self._model} {self._fields!r}>"


class HasManyPlaceholder(Placeholder):
    """Placeholder for a hasMany relation; resolves into a list."""

    __slots__ = ()

    def __iter__(self) -> Iterator[Any]:
        return iter(self.resolve())

    def __len__(self) -> int:
        return len(self.resolve())

    def __bool__(self) -> bool:
        return bool(self.resolve())

    def __contains__(self, item: Any) -> bool:
        return item in self.resolve()

    def __getitem__(self, index: Any) -> Any:
        return self.resolve()[index]

    def __setitem__(self, index: Any, value: Any) -> None:
        self._check_writable()
        self.resolve()[index] = value

    def __delitem__(self, index: Any) -> None:
        self._check_writable()
        del self.resolve()[index]

    def __getattr__(self, name: str) -> Any:
        if name in _LIST_MUTATORS:
            self._check_writable()
        return super().__getattr__(name)

    def __repr__(self) -> str:
        return f"<HasManyPlaceholder {self._owner}.{self._property}>"


def is_placeholder(value: Any) -> bool:
    return isinstance(value, Placeholder)


def _all_slots(cls: type) -> list[str]:
    slots: list[str] = []
    for klass in cls.__mro__:
        slots.extend(getattr(klass, "__slots__", ()))
    return slots


__all__ = ["Placeholder", "BelongsToPlaceholder", "HasManyPlaceholder", "is_placeholder"]
