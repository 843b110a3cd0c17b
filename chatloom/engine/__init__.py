"""Assembly engine: per-session reducers and the multiplexer that feeds them."""
from __future__ import annotations

__all__ = [
    "AssemblerConfig",
    "AssemblyStats",
    "ChatloomError",
    "ConfigError",
    "MessageAssembler",
    "SessionExistsError",
    "SessionMultiplexer",
    "SessionNotFoundError",
    "Subscription",
    "TelemetryCollector",
    "admit",
    "load_yaml_config",
]

from chatloom.engine.assembler import MessageAssembler
from chatloom.engine.config import AssemblerConfig
from chatloom.engine.errors import (
    ChatloomError,
    ConfigError,
    SessionExistsError,
    SessionNotFoundError,
)
from chatloom.engine.multiplexer import SessionMultiplexer, Subscription
from chatloom.engine.session_filter import admit
from chatloom.engine.telemetry import AssemblyStats, TelemetryCollector
from chatloom.engine.yaml_config import load_yaml_config
