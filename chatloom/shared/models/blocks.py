"""Content block models for assistant messages.

Blocks are mutable accumulators: the assembler appends text and command
output to them in place rather than rebuilding the message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union
import time


class BlockType(str, Enum):
    TEXT = "text"
    TOOL_USE = "tool_use"
    THINKING = "thinking"
    LONG_RUNNING_COMMAND = "long_running_command"


class CommandKind(str, Enum):
    """Classification of a long-running command."""
    INSTALL = "install"
    BUILD = "build"
    TEST = "test"


class CommandStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not CommandStatus.RUNNING


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass
class TodoItem:
    content: str
    active_form: str = ""
    status: TodoStatus = TodoStatus.PENDING


@dataclass
class TextBlock:
    text: str = ""
    # Markers (context cleared, history compacted) keep their boundary:
    # streamed text never merges into them.
    marker: bool = False
    type: BlockType = field(default=BlockType.TEXT, init=False)


@dataclass
class ThinkingBlock:
    text: str = ""
    type: BlockType = field(default=BlockType.THINKING, init=False)


@dataclass
class ToolResult:
    """A tool's output, correlated to its invocation by ``tool_use_id``."""
    tool_use_id: str
    content: str = ""
    is_error: bool = False
    # Name of the matched invocation; None when no ToolUse had this id.
    tool_name: str | None = None


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    nested_tools: list[ToolUseBlock] = field(default_factory=list)
    # Scope id of the sub-agent invocation this call was emitted under.
    parent_scope_id: str | None = None
    result: ToolResult | None = None
    type: BlockType = field(default=BlockType.TOOL_USE, init=False)

    @property
    def typed_input(self):
        """The input parsed into its tool-specific shape."""
        from chatloom.shared.tool_input import parse_tool_input

        return parse_tool_input(self.name, self.input)

    @property
    def pending(self) -> bool:
        return self.result is None


@dataclass
class LongRunningCommandBlock:
    handle: str
    command: str = ""
    kind: CommandKind = CommandKind.BUILD
    output: str = ""
    status: CommandStatus = CommandStatus.RUNNING
    started_at: float = field(default_factory=time.time)
    type: BlockType = field(default=BlockType.LONG_RUNNING_COMMAND, init=False)


ContentBlock = Union[TextBlock, ToolUseBlock, ThinkingBlock, LongRunningCommandBlock]
