"""relmap: an in-process object-relational mapper.

A :class:`Repository` maps backend records onto live object graphs: one
instance per (model, id), lazily loaded relations, and graph-aware saves.

Quick start::

    from relmap import BelongsTo, HasMany, MemoryBackend, ModelConfig, Repository

    backend = MemoryBackend()
    backend.add_model(
        ModelConfig(
            "Customer",
            properties={"id": "id", "name": "name"},
            id=["id"],
            has_many={"orders": HasMany("Order", reference="customer_id", belongs_to="customer")},
        ),
        rows=[{"id": 1, "name": "James Bond"}],
    )
    backend.add_model(
        ModelConfig(
            "Order",
            properties={"id": "id", "product": "product"},
            id=["id"],
            belongs_to={"customer": BelongsTo("Customer", reference="customer_id")},
        ),
        rows=[{"id": 1, "product": "Walther PPK", "customer_id": 1}],
    )

    repository = Repository()
    repository.register_backend(backend)
    order = repository.get("Order", 1)
    order.customer.name     # loads the customer on first use
"""

from relmap.backends import DatabaseBackend, DatabaseCollection, MemoryBackend, RepositoryBackend
from relmap.collection import Collection, KeyedCollection, RepositoryCollection
from relmap.config import BelongsTo, HasMany, ModelConfig
from relmap.errors import (
    AmbiguousResultError,
    BackendError,
    ConfigError,
    ConsistencyError,
    DeletedInstanceError,
    DuplicateIndexError,
    DuplicateRecordError,
    ErrorCategory,
    ErrorContext,
    IdentityError,
    IndexChangedError,
    IndexMismatchError,
    InvalidRelationError,
    NoResultError,
    NotBoundError,
    NotPersistedError,
    PendingChangesError,
    PropertyPathError,
    RecordNotFoundError,
    RelmapError,
    StalePlaceholderError,
    UnknownBackendError,
    UnknownFieldError,
    UnknownModelError,
)
from relmap.junction import Junction
from relmap.placeholders import BelongsToPlaceholder, HasManyPlaceholder
from relmap.property_path import PropertyPath
from relmap.protocols import Backend
from relmap.record import Record
from relmap.repository import EntryState, IdentityEntry, Repository
from relmap.settings import RelmapSettings

__version__ = "0.1.0"

__all__ = [
    # Core
    "Repository",
    "EntryState",
    "IdentityEntry",
    "ModelConfig",
    "BelongsTo",
    "HasMany",
    "Record",
    "Junction",
    "PropertyPath",
    "BelongsToPlaceholder",
    "HasManyPlaceholder",
    "RelmapSettings",
    # Collections
    "Collection",
    "KeyedCollection",
    "RepositoryCollection",
    # Backends
    "Backend",
    "RepositoryBackend",
    "MemoryBackend",
    "DatabaseBackend",
    "DatabaseCollection",
    # Errors
    "RelmapError",
    "ErrorCategory",
    "ErrorContext",
    "ConfigError",
    "UnknownModelError",
    "UnknownBackendError",
    "InvalidRelationError",
    "IdentityError",
    "NotBoundError",
    "IndexMismatchError",
    "IndexChangedError",
    "NotPersistedError",
    "DuplicateIndexError",
    "ConsistencyError",
    "PendingChangesError",
    "AmbiguousResultError",
    "NoResultError",
    "StalePlaceholderError",
    "DeletedInstanceError",
    "UnknownFieldError",
    "BackendError",
    "RecordNotFoundError",
    "DuplicateRecordError",
    "PropertyPathError",
]
