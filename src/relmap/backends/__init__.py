"""Storage backends for the Repository."""

from relmap.backends.base import RepositoryBackend
from relmap.backends.database import DatabaseBackend, DatabaseCollection, create_relmap_engine
from relmap.backends.memory import MemoryBackend

__all__ = [
    "DatabaseBackend",
    "DatabaseCollection",
    "MemoryBackend",
    "RepositoryBackend",
    "create_relmap_engine",
]
