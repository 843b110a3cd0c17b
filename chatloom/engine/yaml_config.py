"""YAML configuration loader.

Reads the ``assembler`` section of a YAML file into an AssemblerConfig.
Keys that are absent keep their defaults.

Example YAML:
    assembler:
      scope_tool_names: [Task, Agent]
      duplicate_tool_use_policy: ignore
      assemble_background_sessions: true
      auto_register_sessions: true
      event_queue_size: 5000
      log_level: DEBUG
      telemetry_db_path: ~/.chatloom/telemetry.sqlite3
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .config import AssemblerConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(key, value, "expected a boolean")


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(key, value, "expected an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(key, value, "expected an integer") from None


def _as_name_list(key: str, value: Any) -> list[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(key, value, "expected a list of tool names")


def config_from_mapping(raw: dict[str, Any]) -> AssemblerConfig:
    """Build an AssemblerConfig from an already-parsed ``assembler`` mapping."""
    defaults = AssemblerConfig()
    telemetry_path = raw.get("telemetry_db_path", defaults.telemetry_db_path)
    if telemetry_path:
        telemetry_path = str(Path(str(telemetry_path)).expanduser())
    return AssemblerConfig(
        scope_tool_names=_as_name_list(
            "scope_tool_names", raw.get("scope_tool_names", defaults.scope_tool_names)
        ),
        duplicate_tool_use_policy=str(
            raw.get("duplicate_tool_use_policy", defaults.duplicate_tool_use_policy)
        ),
        assemble_background_sessions=_as_bool(
            "assemble_background_sessions",
            raw.get("assemble_background_sessions", defaults.assemble_background_sessions),
        ),
        auto_register_sessions=_as_bool(
            "auto_register_sessions",
            raw.get("auto_register_sessions", defaults.auto_register_sessions),
        ),
        event_queue_size=_as_int(
            "event_queue_size", raw.get("event_queue_size", defaults.event_queue_size)
        ),
        log_level=str(raw.get("log_level", defaults.log_level)),
        telemetry_db_path=telemetry_path or None,
    )


def load_yaml_config(path: str | Path) -> AssemblerConfig:
    """Load and parse a YAML config file.

    Raises FileNotFoundError, yaml.YAMLError, or ConfigError.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ConfigError("<root>", raw, "expected a mapping at the top level")
    section = raw.get("assembler") or {}
    if not isinstance(section, dict):
        raise ConfigError("assembler", section, "expected a mapping")

    config = config_from_mapping(section)
    logger.info(
        "Parsed YAML config %s, keys: %s",
        path.name, ", ".join(sorted(section)) if section else "(defaults)",
    )
    return config
