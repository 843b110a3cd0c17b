"""Adapters package - bridge between the transport and the assembly engine.

Holds the envelope types decoded from transport frames and the async
event bus that queues them for the session multiplexer.
"""
from __future__ import annotations

__all__ = [
    "Envelope",
    "EventBus",
    "dict_to_envelope",
]

from chatloom.adapters.event_bus import EventBus
from chatloom.adapters.events import Envelope, dict_to_envelope
