"""Tests for the per-session message assembler."""
from __future__ import annotations

import pytest

from chatloom.adapters.events import (
    AssistantTextDelta,
    BackgroundProcessExited,
    BackgroundProcessStarted,
    CompactComplete,
    CompactLoading,
    ContextUsageEvent,
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
    UserMessageEvent,
    dict_to_envelope,
)
from chatloom.engine.assembler import (
    COMPACT_PLACEHOLDER_ID,
    AssemblerState,
    MessageAssembler,
    compacted_divider,
)
from chatloom.engine.config import AssemblerConfig
from chatloom.engine.telemetry import StatsRecorder
from chatloom.shared.models import (
    AssistantMessage,
    CommandStatus,
    Session,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultMessage,
    ToolUseBlock,
    UserMessage,
)


def _assembler(**config) -> MessageAssembler:
    return MessageAssembler(Session(session_id="a"), AssemblerConfig(**config))


def _feed(assembler: MessageAssembler, *envelopes) -> None:
    for env in envelopes:
        assembler.apply(env)


# ── text and reasoning ──────────────────────────────────────────


class TestStreaming:
    def test_text_deltas_build_one_block(self):
        asm = _assembler()
        _feed(asm, AssistantTextDelta(text="Hello "), AssistantTextDelta(text="world"))

        assert len(asm.messages) == 1
        assert asm.messages[0].content == [TextBlock(text="Hello world")]
        assert asm.state is AssemblerState.ASSISTANT_STREAMING

    def test_empty_delta_changes_nothing(self):
        asm = _assembler()
        assert not asm.apply(AssistantTextDelta(text=""))
        assert asm.messages == []
        assert asm.state is AssemblerState.IDLE

    def test_thinking_start_then_deltas(self):
        asm = _assembler()
        _feed(
            asm,
            ThinkingStart(),
            ThinkingDelta(text="step one, "),
            ThinkingDelta(text="step two"),
            AssistantTextDelta(text="Answer"),
        )
        blocks = asm.messages[0].content
        assert isinstance(blocks[0], ThinkingBlock)
        assert blocks[0].text == "step one, step two"
        assert blocks[1].text == "Answer"

    def test_user_message_starts_turn(self):
        asm = _assembler()
        asm.apply(UserMessageEvent(
            content="fix the build",
            attachments=[{"name": "log.txt", "size": 120, "type": "text/plain"}],
        ))

        message = asm.messages[0]
        assert isinstance(message, UserMessage)
        assert message.content == "fix the build"
        assert message.attachments[0].name == "log.txt"
        assert message.attachments[0].size == 120
        assert asm.session.loading


# ── tools ───────────────────────────────────────────────────────


class TestTools:
    def test_tool_use_after_text_adds_block(self):
        asm = _assembler()
        _feed(
            asm,
            AssistantTextDelta(text="Checking"),
            ToolUseEvent(id="t1", name="Bash", input={"command": "ls"}),
        )

        blocks = asm.messages[0].content
        assert len(blocks) == 2
        assert isinstance(blocks[1], ToolUseBlock)
        assert blocks[1].input == {"command": "ls"}
        assert asm.state is AssemblerState.TOOL_PENDING

    def test_tool_result_matches_invocation(self):
        asm = _assembler()
        _feed(
            asm,
            ToolUseEvent(id="t1", name="Bash"),
            ToolResultEvent(tool_use_id="t1", content="file.txt"),
        )

        block = asm.find_tool_use("t1")
        assert block.result.content == "file.txt"
        assert block.result.tool_name == "Bash"
        assert isinstance(asm.messages[-1], ToolResultMessage)
        assert asm.state is AssemblerState.IDLE

    def test_consecutive_results_share_one_message(self):
        asm = _assembler()
        _feed(
            asm,
            ToolUseEvent(id="t1", name="Read"),
            ToolUseEvent(id="t2", name="Read"),
            ToolResultEvent(tool_use_id="t1", content="a"),
            ToolResultEvent(tool_use_id="t2", content="b"),
        )
        assert len(asm.messages) == 2
        assert [r.tool_use_id for r in asm.messages[1].results] == ["t1", "t2"]

    def test_unmatched_result_is_kept_and_counted(self):
        asm = _assembler()
        asm.apply(ToolResultEvent(tool_use_id="ghost", content="?"))

        assert asm.stats.unmatched_tool_results == 1
        assert asm.messages[0].results[0].tool_name is None

    def test_nested_tools_attach_under_task(self):
        asm = _assembler()
        _feed(
            asm,
            ToolUseEvent(id="task-1", name="Task", input={"description": "explore"}),
            ToolUseEvent(id="grep-1", name="Grep", parent_scope_id="task-1"),
            ToolResultEvent(tool_use_id="grep-1", content="3 matches"),
        )

        assert len(asm.messages) == 1
        task = asm.messages[0].content[0]
        assert [t.id for t in task.nested_tools] == ["grep-1"]
        assert task.nested_tools[0].result.content == "3 matches"
        assert asm.open_scope_ids == ["task-1"]

        asm.apply(ToolResultEvent(tool_use_id="task-1", content="summary"))
        assert asm.open_scope_ids == []
        assert isinstance(asm.messages[-1], ToolResultMessage)

    def test_orphaned_child_lands_at_top_level(self):
        asm = _assembler()
        asm.apply(ToolUseEvent(id="c1", name="Read", parent_scope_id="nope"))

        assert asm.stats.orphaned_tool_uses == 1
        assert asm.messages[0].content[0].id == "c1"

    def test_custom_scope_tool_names(self):
        asm = _assembler(scope_tool_names=["Delegate"])
        _feed(
            asm,
            ToolUseEvent(id="d1", name="Delegate"),
            ToolUseEvent(id="c1", name="Read", parent_scope_id="d1"),
        )
        assert asm.messages[0].content[0].nested_tools[0].id == "c1"

    def test_duplicate_tool_use_ignored_by_default(self):
        asm = _assembler()
        asm.apply(ToolUseEvent(id="t1", name="Bash", input={"command": "ls"}))
        assert not asm.apply(ToolUseEvent(id="t1", name="Bash", input={"command": "rm"}))

        assert asm.stats.duplicate_tool_uses == 1
        assert len(asm.messages[0].content) == 1
        assert asm.find_tool_use("t1").input == {"command": "ls"}

    def test_duplicate_tool_use_overwrite_policy(self):
        asm = _assembler(duplicate_tool_use_policy="overwrite")
        asm.apply(ToolUseEvent(id="t1", name="Bash", input={"command": "ls"}))
        assert asm.apply(ToolUseEvent(id="t1", name="Bash", input={"command": "pwd"}))

        assert len(asm.messages[0].content) == 1
        assert asm.find_tool_use("t1").input == {"command": "pwd"}

    def test_tool_use_without_id_gets_placeholder(self):
        asm = _assembler()
        asm.apply(ToolUseEvent(name="Bash"))
        assert asm.messages[0].content[0].id.startswith("unknown-")

    def test_loaded_history_is_reindexed(self):
        task = ToolUseBlock(id="task-1", name="Task")
        session = Session(session_id="a", messages=[AssistantMessage(content=[task])])
        asm = MessageAssembler(session)

        asm.apply(ToolUseEvent(id="c1", name="Read", parent_scope_id="task-1"))

        assert task.nested_tools[0].id == "c1"


# ── long-running commands ───────────────────────────────────────


class TestLongRunning:
    def test_block_is_updated_in_place(self):
        asm = _assembler()
        _feed(
            asm,
            LongRunningStatus(handle="h1", kind="install", command="npm install"),
            AssistantTextDelta(text="Installing..."),
            LongRunningStatus(handle="h1", output_delta="added 10 packages"),
            LongRunningStatus(handle="h1", status="completed"),
        )

        blocks = asm.messages[0].content
        assert len(blocks) == 2
        assert blocks[0].output == "added 10 packages"
        assert blocks[0].status is CommandStatus.COMPLETED
        assert blocks[1].text == "Installing..."

    def test_late_update_is_counted(self):
        asm = _assembler()
        _feed(
            asm,
            LongRunningStatus(handle="h1", status="failed", error="ENOENT"),
            LongRunningStatus(handle="h1", output_delta="more"),
        )
        assert asm.stats.late_command_updates == 1
        assert asm.messages[0].content[0].output == "\n\nError: ENOENT"

    def test_running_command_keeps_tool_pending_state(self):
        asm = _assembler()
        asm.apply(LongRunningStatus(handle="h1", command="npm test"))
        assert asm.state is AssemblerState.TOOL_PENDING


# ── markers and side channels ───────────────────────────────────


class TestMarkersAndState:
    def test_marker_is_its_own_message(self):
        asm = _assembler()
        _feed(
            asm,
            AssistantTextDelta(text="old"),
            Marker(text="--- Context cleared ---"),
            AssistantTextDelta(text="new"),
        )
        assert len(asm.messages) == 3
        assert asm.messages[1].content[0].marker

    def test_compact_placeholder_is_replaced(self):
        asm = _assembler()
        asm.apply(CompactLoading())
        assert asm.messages[-1].id == COMPACT_PLACEHOLDER_ID

        asm.apply(CompactComplete(pre_tokens=12345))

        assert len(asm.messages) == 1
        assert asm.messages[0].content[0].text == compacted_divider(12345)
        assert "12,345 tokens" in asm.messages[0].content[0].text

    def test_error_clears_loading_and_is_shown(self):
        asm = _assembler()
        asm.apply(UserMessageEvent(content="go"))
        asm.apply(ErrorEvent(message="slow down", error_type="rate_limit_error"))

        assert not asm.session.loading
        text = asm.messages[-1].content[0].text
        assert text.endswith("Error: slow down")
        assert text.startswith("\U0001f6a6")

    def test_usage_and_tokens(self):
        asm = _assembler()
        _feed(
            asm,
            TokenUpdate(output_tokens=42),
            ContextUsageEvent(input_tokens=1000, output_tokens=50, context_window=200000),
        )
        assert asm.session.live_token_count == 42
        assert asm.session.context_usage.input_tokens == 1000
        assert asm.messages == []

        asm.apply(TurnResult())
        assert asm.session.live_token_count == 0

    def test_background_processes(self):
        asm = _assembler()
        asm.apply(BackgroundProcessStarted(handle="bg1", command="npm run dev"))
        assert [p.handle for p in asm.session.background_processes] == ["bg1"]

        assert asm.apply(BackgroundProcessExited(handle="bg1", exit_code=0))
        assert asm.session.background_processes == []
        assert not asm.apply(BackgroundProcessExited(handle="bg1"))

    def test_keepalive_changes_nothing(self):
        asm = _assembler()
        assert not asm.apply(Keepalive())
        assert asm.messages == []

    def test_unknown_kind_becomes_system_message(self):
        asm = _assembler()
        asm.apply(dict_to_envelope({"type": "telepathy", "payload": 1}))

        message = asm.messages[0]
        assert isinstance(message, SystemMessage)
        assert message.content == "Unrecognized event: telepathy"
        assert message.raw == {"type": "telepathy", "payload": 1}
        assert asm.stats.unknown_kinds == 1

    def test_malformed_fields_are_counted(self):
        asm = _assembler()
        asm.apply(dict_to_envelope({"type": "tool_result", "toolUseId": "x", "isError": "yes"}))
        assert asm.stats.malformed_fields == 1

    def test_applied_counts_only_changes(self):
        asm = _assembler()
        _feed(
            asm,
            AssistantTextDelta(text="a"),
            AssistantTextDelta(text=""),
            Keepalive(),
            TokenUpdate(output_tokens=3),
        )
        assert asm.stats.applied == 2

        assert asm.apply_session_state(TurnResult())
        assert asm.stats.applied == 3

    def test_counters_are_mirrored_to_recorder(self):
        recorder = StatsRecorder()
        asm = MessageAssembler(Session(session_id="a"), recorder=recorder)
        asm.apply(ToolResultEvent(tool_use_id="ghost"))

        assert recorder.stats.unmatched_tool_results == 1


def test_history_is_a_snapshot():
    asm = _assembler()
    asm.apply(AssistantTextDelta(text="hi"))

    snapshot = asm.history()
    snapshot[0].content[0].text = "changed"
    snapshot.append(UserMessage(content="x"))

    assert asm.messages[0].content[0].text == "hi"
    assert len(asm.messages) == 1


@pytest.mark.parametrize("kind", ["result", "error"])
def test_turn_end_clears_loading(kind):
    asm = _assembler()
    asm.apply(UserMessageEvent(content="go"))
    asm.apply(dict_to_envelope({"type": kind, "message": "x"}))
    assert not asm.session.loading
