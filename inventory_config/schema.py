"""
Inventory configuration schema.

Frozen dataclasses the YAML configuration is parsed into.  Every section
has defaults, so an empty YAML document is a valid configuration; the
loader rejects values that are present but wrong.
"""

from __future__ import annotations

from dataclasses import dataclass, field

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseConfig:
    """Engine and pool settings passed to init_engine_from_url()."""

    url: str = "sqlite:///inventory.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout_seconds: float = 30.0
    busy_timeout_seconds: float = 30.0  # SQLite only


@dataclass(frozen=True)
class LockingConfig:
    """How long a writer waits for a stock pair lock."""

    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class InventoryConfig:
    """The complete runtime configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    locking: LockingConfig = field(default_factory=LockingConfig)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    source: str | None = None
