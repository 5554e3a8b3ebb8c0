"""Engine settings loaded from the environment.

``DataSpineSettings`` collects the knobs a deployment turns: where the
store lives, which SQL dialect it speaks, how sessions flush and how bulk
writes reconcile the identity map.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** ``DATA_SPINE_*`` variables and ``.env`` files
    - **Safe defaults:** bulk writes never clear the identity map unless
      ``auto_reconcile`` is turned on; staleness is still detected

Examples:
    >>> from data_spine.settings import DataSpineSettings
    >>> settings = DataSpineSettings(auto_reconcile=True)
    >>> settings.flush_mode
    'auto'

Tags:
    settings, configuration, pydantic, environment, data-spine
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DataSpineSettings(BaseSettings):
    """Settings shared by the session factory, the CLI and logging.

    Fields
    ──────
    database          : SQLite database path used by the CLI
    dialect           : SQL dialect name (``sqlite``, ``postgresql``, ``mysql``)
    flush_mode        : ``auto`` flushes before queries, ``commit`` only on demand
    auto_reconcile    : clear the identity map after every bulk write
    strict_staleness  : raise instead of refreshing stale tracked entities
    plan_cache_size   : bounded LRU size for built query plans (0 disables)
    default_page_size : page size the CLI uses when ``--size`` is omitted
    log_level         : structlog log level
    log_json          : JSON log lines (``None`` → auto-detect from tty)
    """

    model_config = SettingsConfigDict(
        env_prefix="DATA_SPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────
    database: Path = Field(
        default_factory=lambda: Path.home() / ".data_spine" / "data_spine.db",
        description="SQLite database path used by the CLI",
    )
    dialect: str = "sqlite"

    # ── Session behaviour ────────────────────────────────────────
    flush_mode: Literal["auto", "commit"] = "auto"
    auto_reconcile: bool = False
    strict_staleness: bool = False
    plan_cache_size: int = Field(default=256, ge=0)
    default_page_size: int = Field(default=20, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "WARNING"
    log_json: bool | None = None

    @field_validator("dialect")
    @classmethod
    def _lower_dialect(cls, value: str) -> str:
        return value.lower()


@lru_cache(maxsize=1)
def get_settings() -> DataSpineSettings:
    """Return the process-wide settings (cached; ``cache_clear()`` in tests)."""
    return DataSpineSettings()


__all__ = ["DataSpineSettings", "get_settings"]
