"""Message assembler: the per-session reducer.

Consumes admitted envelopes one at a time and folds them into the
session's ordered message list. Only the last message is ever mutated or
replaced; the one exception is tree attachment, which grafts sub-agent
tool calls onto an earlier ``Task`` block by scope id.

Assembly never raises for envelope content. Missing fields have already
been defaulted by the decoder; unresolvable references and unknown kinds
degrade to a best-effort history and bump a counter.
"""
from __future__ import annotations

import copy
import logging
import time
import uuid
from enum import Enum

from chatloom.adapters.events import (
    AssistantTextDelta,
    BackgroundProcessExited,
    BackgroundProcessKilled,
    BackgroundProcessStarted,
    CompactComplete,
    CompactLoading,
    ContextUsageEvent,
    Envelope,
    ErrorEvent,
    Keepalive,
    LongRunningStatus,
    Marker,
    ThinkingDelta,
    ThinkingStart,
    TokenUpdate,
    ToolResultEvent,
    ToolUseEvent,
    TurnResult,
    UnknownEnvelope,
    UserMessageEvent,
)
from chatloom.engine.block_builder import (
    append_marker,
    append_tool_use,
    apply_text_delta,
    apply_thinking_delta,
    start_thinking,
)
from chatloom.engine.command_tracker import CommandTracker
from chatloom.engine.config import AssemblerConfig
from chatloom.engine.telemetry import AssemblyStats, StatsRecorder
from chatloom.engine.tool_tree import ToolCallTree
from chatloom.shared.models.blocks import (
    CommandStatus,
    LongRunningCommandBlock,
    TextBlock,
    ThinkingBlock,
    ToolResult,
    ToolUseBlock,
)
from chatloom.shared.models.message import (
    AssistantMessage,
    FileAttachment,
    Message,
    SystemMessage,
    ToolResultMessage,
    UserMessage,
)
from chatloom.shared.models.session import BackgroundProcess, ContextUsage, Session

logger = logging.getLogger(__name__)

COMPACT_PLACEHOLDER_ID = "compact-loading"
COMPACT_PLACEHOLDER_TEXT = "Compacting conversation..."

_ERROR_ICONS: dict[str, str] = {
    "timeout_error": "\u23f1\ufe0f",
    "rate_limit_error": "\U0001f6a6",
    "authentication_error": "\U0001f511",
    "network_error": "\U0001f310",
}
_DEFAULT_ERROR_ICON = "\u274c"


class AssemblerState(str, Enum):
    """What a bare text delta would do next."""
    IDLE = "idle"
    ASSISTANT_STREAMING = "assistant_streaming"
    TOOL_PENDING = "tool_pending"


def compacted_divider(pre_tokens: int) -> str:
    return (
        "--- History compacted. Previous messages were summarized to reduce "
        f"token usage ({pre_tokens:,} tokens before compact) ---"
    )


def error_text(message: str, error_type: str = "") -> str:
    icon = _ERROR_ICONS.get(error_type, _DEFAULT_ERROR_ICON)
    return f"{icon} Error: {message or 'An error occurred'}"


def _parse_attachments(raw: list[dict]) -> list[FileAttachment]:
    attachments = []
    for item in raw:
        size = item.get("size")
        preview = item.get("preview")
        attachments.append(FileAttachment(
            id=str(item.get("id") or uuid.uuid4().hex[:8]),
            name=str(item.get("name") or "unknown"),
            size=size if isinstance(size, int) and not isinstance(size, bool) else 0,
            type=str(item.get("type") or ""),
            preview=preview if isinstance(preview, str) else None,
        ))
    return attachments


class MessageAssembler:
    """Owns one session's history and folds envelopes into it."""

    def __init__(
        self,
        session: Session,
        config: AssemblerConfig | None = None,
        recorder: StatsRecorder | None = None,
    ) -> None:
        self.session = session
        self.config = config or AssemblerConfig()
        self.stats = AssemblyStats()
        self._recorder = recorder
        self._tools = ToolCallTree()
        self._commands = CommandTracker()
        self._reindex()

    # ── helpers ──────────────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def messages(self) -> list[Message]:
        return self.session.messages

    @property
    def open_scope_ids(self) -> list[str]:
        return self._tools.open_scope_ids

    @property
    def state(self) -> AssemblerState:
        last = self.session.last_message
        if not isinstance(last, AssistantMessage):
            return AssemblerState.IDLE
        block = last.last_block
        if isinstance(block, ToolUseBlock):
            return AssemblerState.TOOL_PENDING if block.pending else AssemblerState.IDLE
        if isinstance(block, LongRunningCommandBlock):
            if block.status is CommandStatus.RUNNING:
                return AssemblerState.TOOL_PENDING
            return AssemblerState.IDLE
        if isinstance(block, TextBlock) and block.marker:
            return AssemblerState.IDLE
        if isinstance(block, (TextBlock, ThinkingBlock)):
            return AssemblerState.ASSISTANT_STREAMING
        return AssemblerState.IDLE

    def history(self) -> list[Message]:
        """Deep-copied snapshot of the message list."""
        return copy.deepcopy(self.session.messages)

    def find_tool_use(self, tool_use_id: str) -> ToolUseBlock | None:
        return self._tools.get(tool_use_id)

    def _count(self, counter: str, amount: int = 1) -> None:
        setattr(self.stats, counter, getattr(self.stats, counter) + amount)
        if self._recorder is not None:
            self._recorder.incr(counter, self.session_id, amount)

    def _reindex(self) -> None:
        """Rebuild tool and command indexes from a loaded history."""
        tool_blocks: list[ToolUseBlock] = []
        for message in self.session.messages:
            if not isinstance(message, AssistantMessage):
                continue
            for block in message.content:
                if isinstance(block, ToolUseBlock):
                    tool_blocks.append(block)
                elif isinstance(block, LongRunningCommandBlock):
                    self._commands.register(block)
        self._tools.reindex(tool_blocks, lambda b: self.config.is_scope_tool(b.name))
        if tool_blocks:
            logger.debug(
                "Session %s: reindexed %d tool blocks, %d open scopes",
                self.session_id, len(tool_blocks), len(self._tools.open_scope_ids),
            )

    # ── dispatch ────────────────────────────────────────────────────

    def apply(self, envelope: Envelope) -> bool:
        """Fold *envelope* into the session. Returns True if anything changed."""
        changed = self._dispatch(envelope)
        if changed:
            self._count("applied")
        return changed

    def apply_session_state(self, envelope: Envelope) -> bool:
        """Apply only the side-channel part of *envelope* (usage, loading).

        Used for sessions that are out of view when background assembly is
        off; never touches the message list.
        """
        changed = self._update_session_state(envelope)
        if changed:
            self._count("applied")
        return changed

    def _dispatch(self, envelope: Envelope) -> bool:
        if envelope.malformed_fields:
            self._count("malformed_fields", len(envelope.malformed_fields))

        if isinstance(envelope, AssistantTextDelta):
            return self._handle_text_delta(envelope)
        elif isinstance(envelope, ThinkingStart):
            start_thinking(self.messages)
            return True
        elif isinstance(envelope, ThinkingDelta):
            return self._handle_thinking_delta(envelope)
        elif isinstance(envelope, ToolUseEvent):
            return self._handle_tool_use(envelope)
        elif isinstance(envelope, ToolResultEvent):
            return self._handle_tool_result(envelope)
        elif isinstance(envelope, LongRunningStatus):
            return self._handle_long_running_status(envelope)
        elif isinstance(envelope, Marker):
            append_marker(self.messages, envelope.text)
            return True
        elif isinstance(envelope, UserMessageEvent):
            return self._handle_user_message(envelope)
        elif isinstance(envelope, ErrorEvent):
            return self._handle_error(envelope)
        elif isinstance(envelope, CompactLoading):
            self.messages.append(AssistantMessage(
                id=COMPACT_PLACEHOLDER_ID,
                content=[TextBlock(text=COMPACT_PLACEHOLDER_TEXT, marker=True)],
            ))
            return True
        elif isinstance(envelope, CompactComplete):
            return self._handle_compact_complete(envelope)
        elif isinstance(envelope, BackgroundProcessStarted):
            self.session.add_background_process(BackgroundProcess(
                handle=envelope.handle or "unknown",
                command=envelope.command,
                description=envelope.description,
                started_at=envelope.started_at if envelope.started_at is not None else time.time(),
            ))
            return True
        elif isinstance(envelope, (BackgroundProcessKilled, BackgroundProcessExited)):
            return self.session.remove_background_process(envelope.handle)
        elif isinstance(envelope, (ContextUsageEvent, TokenUpdate, TurnResult)):
            return self._update_session_state(envelope)
        elif isinstance(envelope, Keepalive):
            return False
        return self._handle_unknown(envelope)

    def _update_session_state(self, envelope: Envelope) -> bool:
        if isinstance(envelope, ContextUsageEvent):
            self.session.context_usage = ContextUsage(
                input_tokens=envelope.input_tokens,
                output_tokens=envelope.output_tokens,
                context_window=envelope.context_window,
                context_percentage=envelope.context_percentage,
            )
            return True
        if isinstance(envelope, TokenUpdate):
            self.session.live_token_count = envelope.output_tokens
            return True
        if isinstance(envelope, (TurnResult, ErrorEvent)):
            self.session.loading = False
            self.session.live_token_count = 0
            return True
        return False

    # ── individual handlers ─────────────────────────────────────────

    def _handle_text_delta(self, envelope: AssistantTextDelta) -> bool:
        if not envelope.text:
            return False
        apply_text_delta(self.messages, envelope.text)
        return True

    def _handle_thinking_delta(self, envelope: ThinkingDelta) -> bool:
        if not envelope.text:
            return False
        apply_thinking_delta(self.messages, envelope.text)
        return True

    def _handle_tool_use(self, envelope: ToolUseEvent) -> bool:
        tool_id = envelope.id or f"unknown-{uuid.uuid4().hex[:8]}"
        name = envelope.name or "unknown"

        existing = self._tools.get(tool_id)
        if existing is not None:
            self._count("duplicate_tool_uses")
            if self.config.duplicate_tool_use_policy == "overwrite":
                logger.info("Session %s: overwriting duplicate tool_use %s", self.session_id, tool_id)
                existing.name = name
                existing.input = dict(envelope.input)
                return True
            logger.warning("Session %s: ignoring duplicate tool_use %s", self.session_id, tool_id)
            return False

        block = ToolUseBlock(
            id=tool_id,
            name=name,
            input=dict(envelope.input),
            parent_scope_id=envelope.parent_scope_id,
        )
        placement = self._tools.attach(block, self.config.is_scope_tool(name))
        if placement.orphaned:
            self._count("orphaned_tool_uses")
        if placement.top_level:
            append_tool_use(self.messages, block)
        return True

    def _handle_tool_result(self, envelope: ToolResultEvent) -> bool:
        block = self._tools.get(envelope.tool_use_id) if envelope.tool_use_id else None
        result = ToolResult(
            tool_use_id=envelope.tool_use_id,
            content=envelope.content,
            is_error=envelope.is_error,
            tool_name=block.name if block is not None else None,
        )
        if block is None:
            self._count("unmatched_tool_results")
            logger.warning(
                "Session %s: tool_result for unknown tool_use %r",
                self.session_id, envelope.tool_use_id,
            )
        else:
            block.result = result
            if self._tools.close_scope(block.id):
                logger.debug("Session %s: closed scope %s", self.session_id, block.id)
            if self._tools.is_nested(block.id):
                # Sub-agent results stay on their nested block.
                return True

        last = self.session.last_message
        if isinstance(last, ToolResultMessage):
            last.results.append(result)
        else:
            self.messages.append(ToolResultMessage(results=[result]))
        return True

    def _handle_long_running_status(self, envelope: LongRunningStatus) -> bool:
        _block, applied = self._commands.update(
            self.messages,
            envelope.handle or "unknown",
            status=envelope.status,
            kind=envelope.kind,
            command=envelope.command,
            output_delta=envelope.output_delta,
            error=envelope.error,
            started_at=envelope.started_at,
        )
        if not applied:
            self._count("late_command_updates")
        return applied

    def _handle_user_message(self, envelope: UserMessageEvent) -> bool:
        self.messages.append(UserMessage(
            content=envelope.content,
            attachments=_parse_attachments(envelope.attachments),
        ))
        self.session.loading = True
        self.session.live_token_count = 0
        return True

    def _handle_error(self, envelope: ErrorEvent) -> bool:
        self._update_session_state(envelope)
        self.messages.append(AssistantMessage(
            content=[TextBlock(text=error_text(envelope.message, envelope.error_type))],
        ))
        return True

    def _handle_compact_complete(self, envelope: CompactComplete) -> bool:
        divider = AssistantMessage(
            content=[TextBlock(text=compacted_divider(envelope.pre_tokens), marker=True)],
        )
        last = self.session.last_message
        if last is not None and last.id == COMPACT_PLACEHOLDER_ID:
            self.messages[-1] = divider
        else:
            self.messages.append(divider)
        return True

    def _handle_unknown(self, envelope: Envelope) -> bool:
        self._count("unknown_kinds")
        kind = envelope.event_type or "<missing type>"
        logger.warning("Session %s: unrecognized envelope kind %r", self.session_id, kind)
        raw = envelope.raw if isinstance(envelope, UnknownEnvelope) else {"event_type": kind}
        self.messages.append(SystemMessage(
            content=f"Unrecognized event: {kind}",
            raw=copy.deepcopy(raw),
        ))
        return True
