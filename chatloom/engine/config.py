"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via CHATLOOM_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from chatloom.shared.tool_input import normalize_tool_name

from .errors import ConfigError

logger = logging.getLogger(__name__)

DUPLICATE_POLICIES = frozenset({"ignore", "overwrite"})

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigError(name, raw, "expected a boolean")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(name, raw, "expected an integer") from None


@dataclass
class AssemblerConfig:
    """Message assembly configuration."""

    # Tool names that spawn a sub-agent; their id opens a nesting scope.
    scope_tool_names: list[str] = field(default_factory=lambda: ["Task", "Agent"])

    # What to do with a tool_use whose id is already in the session:
    # "ignore" keeps the first, "overwrite" replaces name and input.
    duplicate_tool_use_policy: str = "ignore"

    # Envelopes filtered out of the view are still assembled by their
    # own session's assembler.
    assemble_background_sessions: bool = True
    # An envelope for an unseen session id registers that session.
    auto_register_sessions: bool = True

    event_queue_size: int = 5000

    # Logging
    log_level: str = "INFO"

    # Optional sqlite file mirroring the diagnostic counters.
    telemetry_db_path: str | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.duplicate_tool_use_policy not in DUPLICATE_POLICIES:
            raise ConfigError(
                "duplicate_tool_use_policy",
                self.duplicate_tool_use_policy,
                f"expected one of {sorted(DUPLICATE_POLICIES)}",
            )
        if self.event_queue_size < 0:
            raise ConfigError("event_queue_size", self.event_queue_size, "must be >= 0")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError("log_level", self.log_level, "unknown logging level")

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    def is_scope_tool(self, tool_name: str) -> bool:
        return (
            tool_name in self.scope_tool_names
            or normalize_tool_name(tool_name) in self.scope_tool_names
        )

    @classmethod
    def from_env(cls) -> AssemblerConfig:
        """Load configuration from CHATLOOM_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("CHATLOOM_")
        }
        if env_vars:
            logger.info(
                "AssemblerConfig.from_env: CHATLOOM_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(env_vars.items())),
            )
        else:
            logger.debug("AssemblerConfig.from_env: no CHATLOOM_* env vars set, using defaults")

        defaults = cls()
        scope_raw = os.getenv("CHATLOOM_SCOPE_TOOLS")
        scope_tools = (
            [name.strip() for name in scope_raw.split(",") if name.strip()]
            if scope_raw
            else defaults.scope_tool_names
        )
        config = cls(
            scope_tool_names=scope_tools,
            duplicate_tool_use_policy=os.getenv(
                "CHATLOOM_DUPLICATE_TOOL_POLICY", defaults.duplicate_tool_use_policy
            ).strip().lower(),
            assemble_background_sessions=_env_bool(
                "CHATLOOM_BACKGROUND_ASSEMBLY", defaults.assemble_background_sessions
            ),
            auto_register_sessions=_env_bool(
                "CHATLOOM_AUTO_REGISTER", defaults.auto_register_sessions
            ),
            event_queue_size=_env_int("CHATLOOM_QUEUE_SIZE", defaults.event_queue_size),
            log_level=os.getenv("CHATLOOM_LOG_LEVEL", defaults.log_level),
            telemetry_db_path=os.getenv("CHATLOOM_TELEMETRY_DB_PATH") or None,
        )
        logger.info(
            "AssemblerConfig.from_env: scope_tools=%s duplicate_policy=%s log_level=%s",
            ",".join(config.scope_tool_names),
            config.duplicate_tool_use_policy,
            config.log_level,
        )
        return config
