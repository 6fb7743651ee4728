"""Application-level default Repository.

The core never reads this handle; Repositories, placeholders and collections
pass their Repository explicitly.  Applications that want a single shared
Repository (a script, a request scope) can wire it here::

    from relmap.default import get_repository, set_repository

    set_repository(Repository(settings))
    get_repository().get("Customer", 1)
"""

from __future__ import annotations

from relmap.repository import Repository

_repository: Repository | None = None


def get_repository() -> Repository:
    """Get the default Repository, creating an empty one if none has been set."""
    global _repository
    if _repository is None:
        _repository = Repository()
    return _repository


def set_repository(repository: Repository | None) -> None:
    """Set (or with ``None`` reset) the default Repository."""
    global _repository
    _repository = repository


__all__ = ["get_repository", "set_repository"]
