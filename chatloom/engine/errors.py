"""Exception hierarchy for the assembly engine.

Envelope content never raises; these cover API misuse and bad
configuration only.
"""
from __future__ import annotations

from typing import Any


class ChatloomError(Exception):
    """Base exception for all chatloom errors."""


class SessionNotFoundError(ChatloomError):
    """No assembler is registered for the requested session."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionExistsError(ChatloomError):
    """A session with this id is already open."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session already open: {session_id}")


class ConfigError(ChatloomError):
    """A configuration value is invalid."""
    def __init__(self, key: str, value: Any, reason: str):
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid config {key}={value!r}: {reason}")
