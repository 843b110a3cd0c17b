"""chatloom - multi-session chat history assembly.

Turns an interleaved stream of session-tagged envelopes into one ordered,
block-structured message history per session.
"""
from __future__ import annotations

__version__ = "0.1.0"

__all__ = [
    "AssemblerConfig",
    "EventBus",
    "MessageAssembler",
    "SessionMultiplexer",
    "dict_to_envelope",
]

from chatloom.adapters import EventBus, dict_to_envelope
from chatloom.engine import AssemblerConfig, MessageAssembler, SessionMultiplexer
