"""Tests for sub-agent scope attachment."""
from __future__ import annotations

from chatloom.engine.tool_tree import ToolCallTree
from chatloom.shared.models import ToolResult, ToolUseBlock


def test_child_attaches_under_open_scope():
    tree = ToolCallTree()
    task = ToolUseBlock(id="task-1", name="Task")
    child = ToolUseBlock(id="read-1", name="Read", parent_scope_id="task-1")

    assert tree.attach(task, opens_scope=True).top_level
    placement = tree.attach(child, opens_scope=False)

    assert placement.parent is task
    assert not placement.top_level
    assert task.nested_tools == [child]
    assert tree.is_nested("read-1")
    assert tree.get("read-1") is child


def test_unknown_scope_is_orphaned_at_top_level(caplog):
    tree = ToolCallTree()
    child = ToolUseBlock(id="read-1", name="Read", parent_scope_id="missing")

    placement = tree.attach(child, opens_scope=False)

    assert placement.orphaned
    assert placement.top_level
    assert not tree.is_nested("read-1")
    assert "No open scope missing" in caplog.text


def test_closed_scope_no_longer_accepts_children():
    tree = ToolCallTree()
    task = ToolUseBlock(id="task-1", name="Task")
    tree.attach(task, opens_scope=True)

    assert tree.close_scope("task-1")
    assert not tree.close_scope("task-1")

    late = ToolUseBlock(id="bash-1", name="Bash", parent_scope_id="task-1")
    assert tree.attach(late, opens_scope=False).orphaned
    assert task.nested_tools == []


def test_reindex_reopens_unfinished_scopes():
    child = ToolUseBlock(id="c1", name="Grep", parent_scope_id="t1")
    running = ToolUseBlock(id="t1", name="Task", nested_tools=[child])
    finished = ToolUseBlock(
        id="t2", name="Task", result=ToolResult(tool_use_id="t2", content="done"),
    )

    tree = ToolCallTree()
    tree.reindex([running, finished], lambda b: b.name == "Task")

    assert tree.open_scope_ids == ["t1"]
    assert "c1" in tree
    assert "t2" in tree
    assert tree.is_nested("c1")
