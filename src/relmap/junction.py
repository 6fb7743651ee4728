"""Junction: an entry of a many-to-many relation whose link table has extra fields.

A Junction behaves like the instance it links to, plus the additional fields
of the junction row::

    rating = customer.ratings[0]        # Junction around a Group
    rating.title                        # read from the Group
    rating.rating                       # read from the junction row
    rating.unwrap()                     # the Group itself

In dynamic mode unknown fields are absorbed into the field map (reads of a
missing field return ``None``); in strict mode they raise
:class:`~relmap.errors.UnknownFieldError`.
"""

from __future__ import annotations

from typing import Any

from relmap.errors import UnknownFieldError
from relmap.logging import get_logger

logger = get_logger(__name__)


def _has_field(instance: Any, name: str) -> bool:
    return name in getattr(instance, "__dict__", {}) or hasattr(type(instance), name)


class Junction:
    """Wraps one related instance plus the extra fields of the junction row."""

    __slots__ = ("_instance", "_fields", "_dynamic")

    def __init__(self, instance: Any, fields: dict[str, Any] | None = None, strict: bool = False) -> None:
        object.__setattr__(self, "_instance", instance)
        object.__setattr__(self, "_fields", dict(fields or {}))
        object.__setattr__(self, "_dynamic", not strict)

    def unwrap(self) -> Any:
        """The linked instance."""
        return self._instance

    @property
    def fields(self) -> dict[str, Any]:
        """The junction fields (live mapping)."""
        return self._fields

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        instance = object.__getattribute__(self, "_instance")
        fields = object.__getattribute__(self, "_fields")
        if _has_field(instance, name):
            if name in fields:
                logger.warning("junction.ambiguous_field", field=name, instance=type(instance).__name__)
            return getattr(instance, name)
        if name in fields:
            return fields[name]
        if object.__getattribute__(self, "_dynamic"):
            fields[name] = None
            return None
        raise UnknownFieldError(
            name,
            f"{type(self).__name__} ({type(instance).__name__})",
            sorted({*getattr(instance, "__dict__", {}), *fields}),
        )

    def __setattr__(self, name: str, value: Any) -> None:
        if _has_field(self._instance, name):
            if name in self._fields:
                logger.warning("junction.ambiguous_field", field=name, instance=type(self._instance).__name__)
            setattr(self._instance, name, value)
            return
        if name in self._fields or self._dynamic:
            self._fields[name] = value
            return
        raise UnknownFieldError(
            name,
            f"{type(self).__name__} ({type(self._instance).__name__})",
            sorted({*getattr(self._instance, "__dict__", {}), *self._fields}),
        )

    def __repr__(self) -> str:
        return f"<Junction {self._instance!r} {self._fields!r}>"


def unwrap(value: Any) -> Any:
    """The instance behind *value* when it is a Junction."""
    if isinstance(value, Junction):
        return value.unwrap()
    return value


__all__ = ["Junction", "unwrap"]
