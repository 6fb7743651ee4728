"""
Structured error types for relmap.

Every failure raised by the Repository and its collaborators is a
:class:`RelmapError`.  Errors carry a category, a structured context (model,
index, property and free-form metadata) and an optional chained cause, so a
failing ``save()`` or ``get()`` can be diagnosed from the log line alone.

Manifesto:
    - **Typed hierarchy:** configuration, identity, consistency, backend
    - **Rich context:** model name, attempted index, conflicting values
    - **Error chaining:** preserve the original exception as ``cause``
    - **No retries here:** retry/backoff belongs to the backend layer

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        RelmapError                            │
        │                (category, context, cause)                     │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError          IdentityError        ConsistencyError   │
        │  (CONFIG)             (IDENTITY)           (CONSISTENCY)      │
        │      │                    │                     │             │
        │  UnknownModelError    NotBoundError        PendingChanges     │
        │  UnknownBackendError  IndexMismatchError   AmbiguousResult    │
        │  InvalidRelationError IndexChangedError    NoResultError      │
        │                       NotPersistedError    StalePlaceholder   │
        │                       DuplicateIndexError  DeletedInstance    │
        │  BackendError         PropertyPathError    UnknownFieldError  │
        │  (BACKEND)            (PATH)                                  │
        │      │                                                        │
        │  RecordNotFoundError                                          │
        │  DuplicateRecordError                                         │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = IndexChangedError("Customer", "2", "1")
    >>> str(error)
    'Change rejected, the index changed from {2} to {1}'
    >>> error.to_dict()["category"]
    'IDENTITY'

Tags:
    error-handling, exception-hierarchy, error-context, relmap
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification and log routing."""

    CONFIG = "CONFIG"                # Unregistered model/backend, malformed relation
    IDENTITY = "IDENTITY"            # Unbound instance, index mismatch/change
    CONSISTENCY = "CONSISTENCY"      # Pending changes, ambiguous match, stale placeholder
    BACKEND = "BACKEND"              # Raised by a backend implementation
    PATH = "PATH"                    # Property path resolution
    INTERNAL = "INTERNAL"            # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to a :class:`RelmapError`.

    Only fields that are set end up in :meth:`to_dict`, which keeps log lines
    short.

    Attributes:
        model: Name of the model involved
        index: Identity-map index that was attempted
        property: Property (relation or field) involved
        metadata: Additional key-value pairs
    """

    model: str | None = None
    index: str | None = None
    property: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["model", "index", "property"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RelmapError(Exception):
    """
    Base exception for all relmap errors.

    Subclasses set ``default_category``.  Context can be given up front or
    added fluently with :meth:`with_context`.

    Examples:
        >>> error = RelmapError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(model="Order", index="2").context.model
        'Order'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RelmapError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ConfigError("Bad relation").with_context(
                model="Order", property="customer"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(RelmapError):
    """
    Configuration error.

    Raised immediately; the model or backend configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG


class UnknownModelError(ConfigError):
    """The model is not registered in the Repository."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f'Unknown model: "{model}"', context=ErrorContext(model=model))


class UnknownBackendError(ConfigError):
    """No backend is registered under the given identifier."""

    def __init__(self, backend: str, model: str | None = None):
        self.backend = backend
        super().__init__(
            f'Backend "{backend}" is not registered',
            context=ErrorContext(model=model, metadata={"backend": backend}),
        )


class InvalidRelationError(ConfigError):
    """A belongsTo/hasMany definition is missing required fields."""

    def __init__(self, model: str, property: str, message: str):
        super().__init__(
            f'Invalid relation "{model}.{property}": {message}',
            context=ErrorContext(model=model, property=property),
        )


# =============================================================================
# IDENTITY ERRORS
# =============================================================================


class IdentityError(RelmapError):
    """Identity-map violation for a single operation."""

    default_category = ErrorCategory.IDENTITY


class NotBoundError(IdentityError):
    """The instance is not bound to this Repository."""

    def __init__(self, model: str, index: str | None = None):
        super().__init__(
            f'The "{model}" instance is not bound to this Repository',
            context=ErrorContext(model=model, index=index),
        )


class IndexMismatchError(IdentityError):
    """The data returned by the backend resolves to another index than requested."""

    def __init__(self, model: str, requested: str, retrieved: str):
        self.requested = requested
        self.retrieved = retrieved
        super().__init__(
            f"The id parameter doesn't match the retrieved data. {{{requested}}} != {{{retrieved}}}",
            context=ErrorContext(model=model, index=requested, metadata={"retrieved": retrieved}),
        )


class IndexChangedError(IdentityError):
    """The id fields of a bound instance were modified."""

    def __init__(self, model: str, previous: str | None, current: str | None):
        self.previous = previous
        self.current = current
        super().__init__(
            f"Change rejected, the index changed from {{{previous}}} to {{{current}}}",
            context=ErrorContext(model=model, index=previous, metadata={"new_index": current}),
        )


class NotPersistedError(IdentityError):
    """The operation requires an instance that exists in the backend."""

    def __init__(self, model: str, action: str):
        super().__init__(
            f'Unable to {action} a "{model}" instance that was never saved',
            context=ErrorContext(model=model, metadata={"action": action}),
        )


class DuplicateIndexError(IdentityError):
    """Another instance is already bound to the index of a new one."""

    def __init__(self, model: str, index: str):
        super().__init__(
            f'A "{model}" instance with index {{{index}}} is already bound to this Repository',
            context=ErrorContext(model=model, index=index),
        )


# =============================================================================
# CONSISTENCY ERRORS
# =============================================================================


class ConsistencyError(RelmapError):
    """In-memory state conflicts with the requested operation."""

    default_category = ErrorCategory.CONSISTENCY


class PendingChangesError(ConsistencyError):
    """A reload would discard unsaved changes."""

    def __init__(self, model: str, index: str | None, changes: dict[str, Any]):
        self.changes = changes
        fields = ", ".join(f'"{column}"' for column in changes)
        super().__init__(
            f'The "{model}" instance {{{index}}} has unsaved changes in {fields}',
            context=ErrorContext(model=model, index=index, metadata={"changes": changes}),
        )


class AmbiguousResultError(ConsistencyError):
    """More than one instance matches conditions that must select exactly one."""

    def __init__(self, model: str, conditions: Any):
        self.conditions = conditions
        super().__init__(
            f'More than 1 "{model}" model matches the conditions',
            context=ErrorContext(model=model, metadata={"conditions": repr(conditions)}),
        )


class NoResultError(AmbiguousResultError):
    """No instance matches conditions that must select exactly one."""

    def __init__(self, model: str, conditions: Any):
        self.conditions = conditions
        ConsistencyError.__init__(
            self,
            f'No "{model}" model matches the conditions',
            context=ErrorContext(model=model, metadata={"conditions": repr(conditions)}),
        )


class StalePlaceholderError(ConsistencyError):
    """A placeholder was used after it was replaced, or through a foreign container."""


class DeletedInstanceError(ConsistencyError, AttributeError):
    """The instance was deleted; its fields are no longer available."""

    def __init__(self, model: str, name: str):
        super().__init__(
            f'Unable to access "{name}", the {model} instance was deleted',
            context=ErrorContext(model=model, property=name),
        )


class UnknownFieldError(ConsistencyError, AttributeError):
    """The field is not part of the object."""

    def __init__(self, name: str, owner: str, available: list[str] | None = None):
        super().__init__(
            f'Property "{name}" doesn\'t exist in a {owner} object',
            context=ErrorContext(property=name, metadata={"available": available or []}),
        )


# =============================================================================
# BACKEND / PATH ERRORS
# =============================================================================


class BackendError(RelmapError):
    """Error raised by a backend implementation."""

    default_category = ErrorCategory.BACKEND


class RecordNotFoundError(BackendError):
    """The backend has no row with the requested id."""

    def __init__(self, source: str, where: str):
        super().__init__(
            f'Record "{where}" doesn\'t exist in "{source}"',
            context=ErrorContext(metadata={"source": source, "where": where}),
        )


class DuplicateRecordError(BackendError):
    """The backend already has a row with the id of an added one."""

    def __init__(self, source: str, where: str):
        super().__init__(
            f'Record "{where}" already exists in "{source}"',
            context=ErrorContext(metadata={"source": source, "where": where}),
        )


class PropertyPathError(RelmapError):
    """A property path could not be parsed or resolved."""

    default_category = ErrorCategory.PATH

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message, context=ErrorContext(metadata={"path": path} if path else {}))


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, RelmapError):
        return error.category
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RelmapError",
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
    "categorize_error",
]
