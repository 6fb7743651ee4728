"""Base class for repository backends.

``backend_config`` is the backend-specific blob stored on a ModelConfig.  The
bundled backends use a dict::

    {"table": "orders", "id": ["id"], "auto_increment": "id"}

``add_model`` fills it in for a config, so callers only describe the model.
"""

from __future__ import annotations

from typing import Any

from relmap.collection import Collection
from relmap.config import ModelConfig
from relmap.errors import ConfigError


class RepositoryBackend:
    """Shared bookkeeping for backends; subclasses implement the CRUD calls."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        self.configs: dict[str, ModelConfig] = {}
        self.junctions: dict[str, ModelConfig] = {}

    def add_model(
        self,
        config: ModelConfig,
        table: str | None = None,
        auto_increment: str | None = None,
    ) -> ModelConfig:
        """Serve *config* from this backend.

        Args:
            config: The model definition
            table: Source name, defaults to the lowercased plural
            auto_increment: Column generated on insert; defaults to the
                single id column
        """
        if auto_increment is None and len(config.id) == 1:
            auto_increment = config.id[0]
        config.backend = self.identifier
        config.backend_config = {
            "table": table or str(config.plural).lower(),
            "id": list(config.id),
            "auto_increment": auto_increment,
        }
        self.configs[config.name] = config
        return config

    def add_junction(self, name: str, id: list[str], table: str | None = None) -> ModelConfig:
        """Register the link table of a many-to-many relation."""
        config = ModelConfig(name, properties={column: column for column in id}, id=list(id))
        config.backend = self.identifier
        config.backend_config = {"table": table or name, "id": list(id), "auto_increment": None}
        self.junctions[name] = config
        return config

    # -- CRUD --------------------------------------------------------------

    def get(self, id: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        raise NotImplementedError

    def all(self, backend_config: Any) -> Collection:
        raise NotImplementedError

    def related(self, backend_config: Any, reference: str, id: Any) -> Collection:
        return self.all(backend_config).where({reference: id})

    def add(self, data: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        raise NotImplementedError

    def update(self, new: dict[str, Any], old: dict[str, Any], backend_config: Any) -> dict[str, Any]:
        raise NotImplementedError

    def delete(self, data: dict[str, Any], backend_config: Any) -> None:
        raise NotImplementedError

    # -- Helpers -----------------------------------------------------------

    @staticmethod
    def _id_record(backend_config: Any, data: dict[str, Any]) -> dict[str, Any]:
        try:
            return {column: data[column] for column in backend_config["id"]}
        except KeyError as exc:
            raise ConfigError(
                f'Record for "{backend_config["table"]}" is missing id column {exc}'
            ) from exc

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.identifier!r} models={sorted(self.configs)}>"


__all__ = ["RepositoryBackend"]
