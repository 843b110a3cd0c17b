"""Async event bus bridging the transport to the session multiplexer.

The transport decodes frames on its own task and hands them over via
callback. The EventBus queues them so the multiplexer can process them
one at a time, in arrival order.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from chatloom.adapters.events import Envelope, dict_to_envelope

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue of decoded envelopes."""

    def __init__(self, maxsize: int = 5000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[Envelope] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def _callback(self, data: dict[str, Any]) -> None:
        """Callback handed to the transport for each decoded frame."""
        await self.emit(dict_to_envelope(data))

    def make_callback(self):
        """Return the async callback the transport should invoke per frame."""
        return self._callback

    async def emit(self, envelope: Envelope) -> None:
        """Queue an already-typed envelope."""
        if self._closed:
            return
        try:
            # Backpressure instead of dropping
            await asyncio.wait_for(self._queue.put(envelope), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %.0fs, dropping: %s (queue size: %d)",
                self._put_timeout,
                envelope.event_type,
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[Envelope]:
        """Yield envelopes as they arrive. Stops on close()."""
        while not self._closed:
            try:
                envelope = await asyncio.wait_for(self._queue.get(), timeout=0.5)
                yield envelope
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True

    def reset(self) -> None:
        """Drain leftover envelopes and re-open the bus."""
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self._closed = False
