"""Long-running command tracker.

Install/build/test commands run out of band and report status by handle.
Their block is placed at its arrival position and then updated in place.
"""
from __future__ import annotations

import logging
import re
import time

from chatloom.shared.models.blocks import (
    CommandKind,
    CommandStatus,
    LongRunningCommandBlock,
)
from chatloom.shared.models.message import Message
from chatloom.engine.block_builder import append_block

logger = logging.getLogger(__name__)

_INSTALL_RE = re.compile(r"\b(npm|bun|yarn|pnpm)\s+(install|i|add)\b", re.IGNORECASE)
_BUILD_RE = re.compile(r"\b(npm|bun|yarn|pnpm)\s+(run\s+)?(build|compile)\b", re.IGNORECASE)
_TEST_RE = re.compile(r"\b(npm|bun|yarn|pnpm)\s+(run\s+)?test\b", re.IGNORECASE)


def classify_command(command: str) -> CommandKind | None:
    """Detect install/build/test package-manager commands."""
    if _INSTALL_RE.search(command):
        return CommandKind.INSTALL
    if _BUILD_RE.search(command):
        return CommandKind.BUILD
    if _TEST_RE.search(command):
        return CommandKind.TEST
    return None


def _parse_kind(kind: str, command: str) -> CommandKind:
    try:
        return CommandKind(kind)
    except ValueError:
        return classify_command(command) or CommandKind.BUILD


def _parse_status(status: str) -> CommandStatus:
    try:
        return CommandStatus(status)
    except ValueError:
        logger.debug("Unknown command status %r, treating as running", status)
        return CommandStatus.RUNNING


class CommandTracker:
    """Maps process handles to their (most recent) command block."""

    def __init__(self) -> None:
        self._blocks: dict[str, LongRunningCommandBlock] = {}

    def get(self, handle: str) -> LongRunningCommandBlock | None:
        return self._blocks.get(handle)

    def register(self, block: LongRunningCommandBlock) -> None:
        self._blocks[block.handle] = block

    def update(
        self,
        messages: list[Message],
        handle: str,
        *,
        status: str = "running",
        kind: str = "",
        command: str = "",
        output_delta: str = "",
        error: str = "",
        started_at: float | None = None,
    ) -> tuple[LongRunningCommandBlock, bool]:
        """Create or update the block for *handle*.

        Returns ``(block, applied)``; ``applied`` is False when the block
        was already terminal and the update was discarded.
        """
        new_status = _parse_status(status)
        block = self._blocks.get(handle)
        if block is None:
            block = LongRunningCommandBlock(
                handle=handle,
                command=command,
                kind=_parse_kind(kind, command),
                output=output_delta,
                status=new_status,
                started_at=started_at if started_at is not None else time.time(),
            )
            if new_status is CommandStatus.FAILED and error:
                block.output += f"\n\nError: {error}"
            append_block(messages, block)
            self._blocks[handle] = block
            return block, True

        if block.status.is_terminal:
            logger.warning(
                "Ignoring %s update for command %s: already %s",
                new_status.value, handle, block.status.value,
            )
            return block, False

        if command and not block.command:
            block.command = command
        block.output += output_delta
        if new_status is CommandStatus.FAILED and error:
            block.output += f"\n\nError: {error}"
        block.status = new_status
        return block, True
