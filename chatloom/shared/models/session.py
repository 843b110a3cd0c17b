"""Session state: one conversation's ordered history plus side-channel state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import time

from chatloom.shared.models.message import Message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ContextUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    context_window: int = 0
    context_percentage: float = 0.0


@dataclass
class BackgroundProcess:
    """A detached shell process (e.g. a dev server) started by a tool call."""
    handle: str
    command: str = ""
    description: str = ""
    started_at: float = field(default_factory=time.time)


@dataclass
class Session:
    """Holds all conversation state for a session.

    ``messages`` is written only by the session's MessageAssembler.
    """

    session_id: str
    messages: list[Message] = field(default_factory=list)
    active: bool = False
    name: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    loading: bool = False
    live_token_count: int = 0
    context_usage: ContextUsage | None = None
    background_processes: list[BackgroundProcess] = field(default_factory=list)

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def add_background_process(self, process: BackgroundProcess) -> None:
        self.remove_background_process(process.handle)
        self.background_processes.append(process)

    def remove_background_process(self, handle: str) -> bool:
        before = len(self.background_processes)
        self.background_processes = [
            p for p in self.background_processes if p.handle != handle
        ]
        return len(self.background_processes) != before
