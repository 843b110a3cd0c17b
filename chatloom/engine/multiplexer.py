"""Session multiplexer.

Owns one MessageAssembler per session id and routes every envelope from
the shared transport. The view (``get_active_session_history``) only ever
reflects envelopes admitted by the session filter; envelopes tagged for
other sessions are assembled by those sessions' own assemblers, never
replayed into the view later.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from chatloom.adapters.event_bus import EventBus
from chatloom.adapters.events import (
    ContextUsageEvent,
    Envelope,
    ErrorEvent,
    TokenUpdate,
    TurnResult,
    dict_to_envelope,
)
from chatloom.engine.assembler import MessageAssembler
from chatloom.engine.config import AssemblerConfig
from chatloom.engine.errors import SessionExistsError, SessionNotFoundError
from chatloom.engine.session_filter import admit
from chatloom.engine.telemetry import AssemblyStats, StatsRecorder, TelemetryCollector
from chatloom.shared.models.message import Message
from chatloom.shared.models.session import Session

logger = logging.getLogger(__name__)

# Signature: callback(session_id, history_snapshot) -> None
HistoryCallback = Callable[[str, list[Message]], None]

# Applied to out-of-view sessions even when background assembly is off.
_SIDE_CHANNEL_TYPES = (ContextUsageEvent, TokenUpdate, TurnResult, ErrorEvent)


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``on_history_changed``."""
    session_id: str | None
    callback: HistoryCallback
    _owner: SessionMultiplexer | None = None

    @property
    def active(self) -> bool:
        return self._owner is not None

    def cancel(self) -> None:
        if self._owner is not None:
            self._owner._unsubscribe(self)
            self._owner = None


class SessionMultiplexer:
    """Routes envelopes from one transport to per-session assemblers."""

    def __init__(
        self,
        config: AssemblerConfig | None = None,
        active_session_id: str | None = None,
        telemetry: TelemetryCollector | None = None,
    ) -> None:
        self.config = config or AssemblerConfig()
        logging.getLogger("chatloom").setLevel(self.config.log_level_value)

        if telemetry is None and self.config.telemetry_db_path:
            telemetry = TelemetryCollector(Path(self.config.telemetry_db_path))
        self._recorder = StatsRecorder(collector=telemetry)

        self._assemblers: dict[str, MessageAssembler] = {}
        self._subscriptions: list[Subscription] = []
        self._active_session_id: str | None = None
        if active_session_id is not None:
            self.set_active_session(active_session_id)

    # ── sessions ────────────────────────────────────────────────────

    @property
    def stats(self) -> AssemblyStats:
        """Counters summed over every session routed by this multiplexer."""
        return self._recorder.stats

    @property
    def active_session_id(self) -> str | None:
        return self._active_session_id

    def sessions(self) -> list[str]:
        return list(self._assemblers)

    def open_session(
        self,
        session_id: str,
        messages: list[Message] | None = None,
        name: str | None = None,
    ) -> Session:
        """Register a session, optionally seeded with a loaded history."""
        if session_id in self._assemblers:
            raise SessionExistsError(session_id)
        session = Session(
            session_id=session_id,
            messages=list(messages or []),
            name=name,
            active=session_id == self._active_session_id,
        )
        self._assemblers[session_id] = MessageAssembler(session, self.config, self._recorder)
        logger.info(
            "Opened session %s (%d messages loaded)", session_id, len(session.messages),
        )
        return session

    def close_session(self, session_id: str) -> None:
        """Discard a session's assembler and history."""
        if self._assemblers.pop(session_id, None) is None:
            raise SessionNotFoundError(session_id)
        self._subscriptions = [s for s in self._subscriptions if s.session_id != session_id]
        if self._active_session_id == session_id:
            self._active_session_id = None
        logger.info("Closed session %s", session_id)

    def assembler(self, session_id: str) -> MessageAssembler:
        assembler = self._assemblers.get(session_id)
        if assembler is None:
            raise SessionNotFoundError(session_id)
        return assembler

    def session(self, session_id: str) -> Session:
        return self.assembler(session_id).session

    def history(self, session_id: str) -> list[Message]:
        """Snapshot of any known session's history."""
        return self.assembler(session_id).history()

    def set_active_session(self, session_id: str | None) -> None:
        """Switch the view. Local and synchronous; nothing is replayed."""
        if session_id is not None and session_id not in self._assemblers:
            self.open_session(session_id)
        previous = self._active_session_id
        if previous is not None and previous in self._assemblers:
            self._assemblers[previous].session.active = False
        self._active_session_id = session_id
        if session_id is not None:
            self._assemblers[session_id].session.active = True
        logger.debug("Active session %s -> %s", previous, session_id)

    def get_active_session_history(self) -> list[Message]:
        if self._active_session_id is None:
            return []
        return self.history(self._active_session_id)

    # ── subscriptions ───────────────────────────────────────────────

    def on_history_changed(
        self,
        session_id: str | None,
        callback: HistoryCallback,
    ) -> Subscription:
        """Call *callback* after each envelope that changes *session_id*.

        ``session_id=None`` subscribes to every session. Each callback gets
        its own deep copy of the history, so every notification costs one
        copy of the session per matching subscriber.
        """
        subscription = Subscription(session_id=session_id, callback=callback, _owner=self)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions = [s for s in self._subscriptions if s is not subscription]

    def _notify(self, session_id: str) -> None:
        for subscription in list(self._subscriptions):
            if subscription.session_id not in (None, session_id):
                continue
            try:
                subscription.callback(session_id, self.history(session_id))
            except Exception:
                logger.exception("History subscriber failed for session %s", session_id)

    # ── routing ─────────────────────────────────────────────────────

    def route(self, envelope: Envelope | dict[str, Any]) -> bool:
        """Route one envelope. Returns True if it was admitted to the view."""
        if isinstance(envelope, dict):
            envelope = dict_to_envelope(envelope)

        if admit(envelope, self._active_session_id):
            target = envelope.session_id or self._active_session_id
            if target is None:
                self._recorder.incr("unrouted")
                logger.debug(
                    "No active session for untagged %s envelope; dropped", envelope.event_type,
                )
                return True
            self._apply(self._assembler_for(target), envelope, side_channel_only=False)
            return True

        self._recorder.incr("filtered", envelope.session_id)
        logger.debug(
            "Filtered %s envelope for session %s (active: %s)",
            envelope.event_type, envelope.session_id, self._active_session_id,
        )
        if envelope.session_tag_malformed or not envelope.session_id:
            return False
        background = self.config.assemble_background_sessions
        if not background and not isinstance(envelope, _SIDE_CHANNEL_TYPES):
            return False
        assembler = self._assemblers.get(envelope.session_id)
        if assembler is None and self.config.auto_register_sessions:
            self.open_session(envelope.session_id)
            assembler = self._assemblers[envelope.session_id]
        if assembler is not None:
            self._apply(assembler, envelope, side_channel_only=not background)
        return False

    def _assembler_for(self, session_id: str) -> MessageAssembler:
        assembler = self._assemblers.get(session_id)
        if assembler is None:
            self.open_session(session_id)
            assembler = self._assemblers[session_id]
        return assembler

    def _apply(
        self,
        assembler: MessageAssembler,
        envelope: Envelope,
        side_channel_only: bool,
    ) -> None:
        if side_channel_only:
            changed = assembler.apply_session_state(envelope)
        else:
            changed = assembler.apply(envelope)
        if changed:
            self._notify(assembler.session_id)

    def make_bus(self) -> EventBus:
        """An EventBus sized by ``config.event_queue_size``."""
        return EventBus(maxsize=self.config.event_queue_size)

    async def consume(self, bus: EventBus) -> None:
        """Route envelopes from *bus* until it is closed."""
        async for envelope in bus.consume():
            try:
                self.route(envelope)
            except Exception:
                logger.exception("Error routing envelope: %s", envelope.event_type)
