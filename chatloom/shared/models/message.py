"""Message models: the four roles a session history can hold."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union
import uuid

from chatloom.shared.models.blocks import ContentBlock, ToolResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())[:8]


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL_RESULT = "tool_result"


@dataclass
class FileAttachment:
    id: str
    name: str
    size: int = 0
    type: str = ""
    preview: str | None = None


@dataclass
class UserMessage:
    content: str = ""
    attachments: list[FileAttachment] = field(default_factory=list)
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    role: MessageRole = field(default=MessageRole.USER, init=False)


@dataclass
class AssistantMessage:
    content: list[ContentBlock] = field(default_factory=list)
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    role: MessageRole = field(default=MessageRole.ASSISTANT, init=False)

    @property
    def last_block(self) -> ContentBlock | None:
        return self.content[-1] if self.content else None


@dataclass
class SystemMessage:
    content: str = ""
    # Raw payload kept for diagnostics (unrecognized envelope kinds).
    raw: dict[str, Any] | None = None
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    role: MessageRole = field(default=MessageRole.SYSTEM, init=False)


@dataclass
class ToolResultMessage:
    results: list[ToolResult] = field(default_factory=list)
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    role: MessageRole = field(default=MessageRole.TOOL_RESULT, init=False)


Message = Union[UserMessage, AssistantMessage, SystemMessage, ToolResultMessage]
