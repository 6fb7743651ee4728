"""Generic dynamic record used for models without a class of their own.

When a :class:`~relmap.config.ModelConfig` has no ``class_``, the Repository
generates a :class:`Record` subclass named after the model whose ``_fields``
enumerate the configured properties.  Records:

* reject unknown public fields with :class:`~relmap.errors.UnknownFieldError`,
* raise/observe lifecycle signals (``create``, ``load``, ``saving``,
  ``saved``, ``deleting``, ``deleted``) through :meth:`Record.on` and
  :meth:`Record.trigger`,
* become tombstones after a delete: every further field read or write raises
  :class:`~relmap.errors.DeletedInstanceError`,
* detach their placeholders when shallow-copied, so a relation is only ever
  loaded into the record that owns it.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar

from relmap.errors import DeletedInstanceError, UnknownFieldError
from relmap.placeholders import is_placeholder

if TYPE_CHECKING:
    from relmap.config import ModelConfig

Handler = Callable[..., Any]


class Record:
    """Object with a fixed set of public fields and lifecycle signals."""

    _fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self, **values: Any) -> None:
        for name in self._fields:
            object.__setattr__(self, name, None)
        for name, value in values.items():
            setattr(self, name, value)

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails
        if name.startswith("_"):
            raise AttributeError(name)
        if self.__dict__.get("_deleted"):
            raise DeletedInstanceError(type(self).__name__, name)
        raise UnknownFieldError(name, type(self).__name__, list(self._fields))

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_"):
            if self.__dict__.get("_deleted"):
                raise DeletedInstanceError(type(self).__name__, name)
            if self._fields and name not in self._fields:
                raise UnknownFieldError(name, type(self).__name__, list(self._fields))
        object.__setattr__(self, name, value)

    def __delattr__(self, name: str) -> None:
        if self.__dict__.get("_deleted"):
            raise DeletedInstanceError(type(self).__name__, name)
        object.__delattr__(self, name)

    def __copy__(self) -> Record:
        clone = type(self).__new__(type(self))
        for name, value in self.__dict__.items():
            if is_placeholder(value):
                # The copy still points at this record, so using it raises
                value = copy.copy(value)
            elif name == "_listeners":
                value = {event: list(handlers) for event, handlers in value.items()}
            object.__setattr__(clone, name, value)
        return clone

    # -- Lifecycle signals -------------------------------------------------

    def on(self, event: str, handler: Handler) -> None:
        """Call *handler* whenever *event* is triggered on this record."""
        listeners = self.__dict__.setdefault("_listeners", {})
        listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Handler) -> None:
        listeners = self.__dict__.get("_listeners", {})
        if handler in listeners.get(event, []):
            listeners[event].remove(handler)

    def trigger(self, event: str, **kwargs: Any) -> None:
        for handler in list(self.__dict__.get("_listeners", {}).get(event, [])):
            handler(self, **kwargs)

    # -- Tombstone ---------------------------------------------------------

    def _tombstone(self) -> None:
        for name in [name for name in self.__dict__ if not name.startswith("_")]:
            del self.__dict__[name]
        object.__setattr__(self, "_deleted", True)

    def __repr__(self) -> str:
        if self.__dict__.get("_deleted"):
            return f"<{type(self).__name__} (deleted)>"
        fields = ", ".join(
            f"{name}={value!r}"
            for name, value in self.__dict__.items()
            if not name.startswith("_")
        )
        return f"<{type(self).__name__} {fields}>"


def make_record_class(config: "ModelConfig") -> type[Record]:
    """Generate the Record subclass for a model without a class."""
    return type(
        config.name,
        (Record,),
        {"_fields": tuple(config.property_names()), "__module__": "relmap.generated"},
    )


__all__ = ["Record", "make_record_class"]
