"""
inventory_config -- single public entrypoint for inventory configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.  Returns a frozen ``InventoryConfig``.

Architecture position:
    Configuration -- YAML-driven settings.  This package sits above
    ``inventory_kernel``; the kernel MUST NEVER import from
    ``inventory_config``.  ``inventory_kernel.db.engine.bootstrap()``
    accepts the returned object by shape.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Precedence: explicit ``config_path`` argument, then the
      ``INVENTORY_CONFIG`` environment variable, then ``sets/default.yaml``.
      ``DATABASE_URL``, ``INVENTORY_LOG_LEVEL`` and ``INVENTORY_LOCK_TIMEOUT``
      override the file.

Failure modes:
    - ``FileNotFoundError`` -- the selected YAML file does not exist.
    - ``ValueError`` -- a setting has the wrong type or range; the message
      starts with the offending key.

Audit relevance:
    Every successful call emits an ``inventory_config_loaded`` log record
    with the source file and the effective lock timeout and log level.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from inventory_config.loader import ENV_OVERRIDES, load_config
from inventory_config.schema import (
    DatabaseConfig,
    InventoryConfig,
    LockingConfig,
    LoggingSettings,
)

_logger = logging.getLogger("inventory_kernel.config")

# Default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "INVENTORY_CONFIG"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> InventoryConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to ``$INVENTORY_CONFIG``
            or the packaged ``sets/default.yaml``.
        environ: Environment used for overrides.  Defaults to ``os.environ``;
            tests pass a dict.

    Returns:
        A frozen InventoryConfig.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If a setting fails validation.
    """
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = env.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    path = Path(config_path)

    config = load_config(path, environ=env)

    _logger.info(
        "inventory_config_loaded",
        extra={
            "config_source": str(path),
            "overrides": sorted(name for name in ENV_OVERRIDES if env.get(name)),
            "log_level": config.logging.level,
            "lock_timeout_seconds": config.locking.timeout_seconds,
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "InventoryConfig",
    "LockingConfig",
    "LoggingSettings",
    "get_active_config",
]
