"""Data model for assembled conversations."""
from __future__ import annotations

from chatloom.shared.models.blocks import (
    BlockType,
    CommandKind,
    CommandStatus,
    ContentBlock,
    LongRunningCommandBlock,
    TextBlock,
    ThinkingBlock,
    TodoItem,
    TodoStatus,
    ToolResult,
    ToolUseBlock,
)
from chatloom.shared.models.message import (
    AssistantMessage,
    FileAttachment,
    Message,
    MessageRole,
    SystemMessage,
    ToolResultMessage,
    UserMessage,
)
from chatloom.shared.models.session import BackgroundProcess, ContextUsage, Session

__all__ = [
    "AssistantMessage",
    "BackgroundProcess",
    "BlockType",
    "CommandKind",
    "CommandStatus",
    "ContentBlock",
    "ContextUsage",
    "FileAttachment",
    "LongRunningCommandBlock",
    "Message",
    "MessageRole",
    "Session",
    "SystemMessage",
    "TextBlock",
    "ThinkingBlock",
    "TodoItem",
    "TodoStatus",
    "ToolResult",
    "ToolResultMessage",
    "ToolUseBlock",
    "UserMessage",
]
