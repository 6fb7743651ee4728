"""Settings for relmap.

Configuration is explicit, validated and environment-driven.  Every field can
be overridden with a ``RELMAP_`` prefixed environment variable or a ``.env``
file.

Examples:
    >>> from relmap.settings import RelmapSettings
    >>> settings = RelmapSettings(database_url="sqlite:///shop.db")
    >>> settings.keep_missing_related_instances
    False

Tags:
    settings, configuration, pydantic, environment, relmap
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelmapSettings(BaseSettings):
    """Settings shared by the Repository, its backends and logging.

    Fields
    ──────
    log_level                       : Structlog log level
    json_logs                       : JSON output (None: auto-detect from TTY)
    database_url                    : SQLAlchemy URL for ``DatabaseBackend.from_settings``
    echo_sql                        : Echo every SQL statement
    keep_missing_related_instances  : Default for ``Repository.save``
    strict_junctions                : Reject unknown fields on Junctions with configured fields
    """

    model_config = SettingsConfigDict(
        env_prefix="RELMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Database backend ─────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///:memory:",
        description="SQLAlchemy database URL",
    )
    echo_sql: bool = False

    # ── Repository behaviour ─────────────────────────────────────
    keep_missing_related_instances: bool = Field(
        default=False,
        description="Keep hasMany children that were removed from a collection instead of deleting them",
    )
    strict_junctions: bool = True


__all__ = ["RelmapSettings"]
