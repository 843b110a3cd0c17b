"""Content block builder: append-to-last-block vs. start-new-block.

Every function here takes the session's message list and mutates only its
last element, or appends a new one.
"""
from __future__ import annotations

from chatloom.shared.models.blocks import (
    ContentBlock,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
)
from chatloom.shared.models.message import AssistantMessage, Message


def _open_assistant(messages: list[Message]) -> AssistantMessage | None:
    """The last message if new blocks may be appended to it."""
    last = messages[-1] if messages else None
    if not isinstance(last, AssistantMessage):
        return None
    block = last.last_block
    # A marker seals its message.
    if isinstance(block, TextBlock) and block.marker:
        return None
    return last


def append_block(messages: list[Message], block: ContentBlock) -> AssistantMessage:
    """Append *block* to the last assistant message, or start a new one."""
    target = _open_assistant(messages)
    if target is None:
        target = AssistantMessage(content=[block])
        messages.append(target)
    else:
        target.content.append(block)
    return target


def apply_text_delta(messages: list[Message], text: str) -> TextBlock:
    """Merge an assistant text delta into the history."""
    target = _open_assistant(messages)
    if target is not None:
        block = target.last_block
        if isinstance(block, TextBlock):
            block.text += text
            return block
    block = TextBlock(text=text)
    append_block(messages, block)
    return block


def apply_thinking_delta(messages: list[Message], text: str) -> ThinkingBlock:
    """Merge a reasoning delta into the history."""
    target = _open_assistant(messages)
    if target is not None:
        block = target.last_block
        if isinstance(block, ThinkingBlock):
            block.text += text
            return block
    block = ThinkingBlock(text=text)
    append_block(messages, block)
    return block


def start_thinking(messages: list[Message]) -> ThinkingBlock:
    """Open an empty reasoning block for the deltas that follow."""
    block = ThinkingBlock()
    append_block(messages, block)
    return block


def append_tool_use(messages: list[Message], block: ToolUseBlock) -> AssistantMessage:
    """Tool invocations arrive complete and always get their own block."""
    return append_block(messages, block)


def append_marker(messages: list[Message], text: str) -> AssistantMessage:
    """Insert a divider as its own message so nothing merges into it."""
    message = AssistantMessage(content=[TextBlock(text=text, marker=True)])
    messages.append(message)
    return message
