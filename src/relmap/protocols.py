"""
Backend protocol: the contract between the Repository and storage.

The Repository never talks to a database driver.  Each registered model
points at a backend that exposes raw CRUD over plain records (``dict``s keyed
by column):

    ┌────────────────────────────────────────────────────────────────┐
    │ get(id, backend_config)             → record (fails if absent) │
    │ all(backend_config)                 → lazy Collection[record]  │
    │ related(backend_config, ref, id)    → lazy Collection[record]  │
    │ add(record, backend_config)         → record as persisted      │
    │ update(new, old, backend_config)    → record as persisted      │
    │ delete(record, backend_config)      → None                     │
    └────────────────────────────────────────────────────────────────┘

Backends also publish the model configs they serve (``configs``) and the
junction configs used by many-to-many relations (``junctions``); junction
rows go through the same CRUD operations.

Implementations:
    - :class:`relmap.backends.memory.MemoryBackend`: dict-backed tables
    - :class:`relmap.backends.database.DatabaseBackend`: SQLAlchemy Core

Tags:
    protocol, backend, repository, relmap
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from relmap.collection import Collection
    from relmap.config import ModelConfig


@runtime_checkable
class Backend(Protocol):
    """Raw CRUD access to the persisted rows of one or more models."""

    identifier: str
    configs: dict[str, "ModelConfig"]
    junctions: dict[str, "ModelConfig"]

    def get(self, id: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        """Fetch the row identified by *id* (``{column: value}``)."""
        ...

    def all(self, backend_config: Any) -> "Collection":
        """Lazy collection of every row."""
        ...

    def related(self, backend_config: Any, reference: str, id: Any) -> "Collection":
        """Lazy collection of the rows whose *reference* column equals *id*."""
        ...

    def add(self, data: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        """Insert a row; returns it including generated fields."""
        ...

    def update(self, new: dict[str, Any], old: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        """Update the row identified by *old* with the values of *new*."""
        ...

    def delete(self, data: dict[str, Any], backend_config: Any) -> None:
        """Delete the row identified by *data*."""
        ...


__all__ = ["Backend"]
