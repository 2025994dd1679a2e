"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads the YAML configuration file, applies environment overrides and
parses the result into the frozen dataclasses of ``inventory_config.schema``.
The single public entry point for runtime config is
``inventory_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse error raises ``ValueError`` naming the offending key
  (``database.pool_size``, ``locking.timeout_seconds``, ...).
* Unknown keys are rejected rather than silently ignored.
* Environment overrides win over file values.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    LOG_LEVELS,
    DatabaseConfig,
    InventoryConfig,
    LockingConfig,
    LoggingSettings,
)

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "DATABASE_URL": ("database", "url"),
    "INVENTORY_LOG_LEVEL": ("logging", "level"),
    "INVENTORY_LOCK_TIMEOUT": ("locking", "timeout_seconds"),
}

_SECTIONS = {
    "database": DatabaseConfig,
    "locking": LockingConfig,
    "logging": LoggingSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str],
) -> dict[str, Any]:
    """Return a copy of ``data`` with environment overrides applied."""
    merged = {name: dict(data.get(name) or {}) for name in _SECTIONS}
    for key, value in data.items():
        if key not in merged:
            merged[key] = value
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            merged[section][key] = value
    return merged


def _coerce(path: str, value: Any, default: Any) -> Any:
    """Convert ``value`` to the type of the field default."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValueError(f"{path}: expected a boolean, got {value!r}")
    if isinstance(default, int):
        if isinstance(value, bool):
            raise ValueError(f"{path}: expected an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{path}: expected an integer, got {value!r}") from None
    if isinstance(default, float):
        if isinstance(value, bool):
            raise ValueError(f"{path}: expected a number, got {value!r}")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{path}: expected a number, got {value!r}") from None
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected a string, got {value!r}")
    return value


def parse_section(name: str, data: Any):
    """Parse one top-level section into its dataclass."""
    cls = _SECTIONS[name]
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{name}: expected a mapping, got {type(data).__name__}")

    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"{name}.{unknown[0]}: unknown setting")

    values = {
        key: _coerce(f"{name}.{key}", value, getattr(defaults, key))
        for key, value in data.items()
    }
    return cls(**values)


def _validate(config: InventoryConfig) -> None:
    database = config.database
    if not database.url:
        raise ValueError("database.url: must not be empty")
    if database.pool_size < 1:
        raise ValueError("database.pool_size: must be at least 1")
    if database.max_overflow < 0:
        raise ValueError("database.max_overflow: must not be negative")
    if database.pool_timeout_seconds <= 0:
        raise ValueError("database.pool_timeout_seconds: must be positive")
    if database.busy_timeout_seconds <= 0:
        raise ValueError("database.busy_timeout_seconds: must be positive")
    if config.locking.timeout_seconds <= 0:
        raise ValueError("locking.timeout_seconds: must be positive")
    if config.logging.level not in LOG_LEVELS:
        raise ValueError(
            f"logging.level: expected one of {', '.join(LOG_LEVELS)}, "
            f"got {config.logging.level!r}"
        )


def parse_config(data: Mapping[str, Any], source: str | None = None) -> InventoryConfig:
    """
    Build an InventoryConfig from an already-merged mapping.

    Raises:
        ValueError: unknown section or key, wrong type, or out-of-range value.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"{unknown[0]}: unknown configuration section")

    sections = {name: parse_section(name, data.get(name)) for name in _SECTIONS}
    logging_settings = sections["logging"]
    sections["logging"] = LoggingSettings(level=logging_settings.level.strip().upper())

    config = InventoryConfig(source=source, **sections)
    _validate(config)
    return config


def load_config(
    path: Path,
    environ: Mapping[str, str] | None = None,
) -> InventoryConfig:
    """Load ``path``, apply ``environ`` overrides and parse the result."""
    data = load_yaml_file(path)
    if environ:
        data = apply_env_overrides(data, environ)
    return parse_config(data, source=str(path))
