"""Tests for typed tool input views."""
from __future__ import annotations

import pytest

from chatloom.shared.models import TodoStatus, ToolUseBlock
from chatloom.shared.tool_input import (
    BashInput,
    EditInput,
    GenericInput,
    TaskInput,
    TodoWriteInput,
    normalize_tool_name,
    parse_args,
    parse_tool_input,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ({"a": 1}, {"a": 1}),
        ('{"a": 1}', {"a": 1}),
        ("{'a': 1}", {"a": 1}),
        ("[1, 2]", {"_raw": "[1, 2]"}),
        ("not json", {"_raw": "not json"}),
        (None, {}),
        (42, {}),
    ],
)
def test_parse_args(raw, expected):
    assert parse_args(raw) == expected


def test_normalize_tool_name():
    assert normalize_tool_name("run_bash") == "Bash"
    assert normalize_tool_name("mcp__orchestrator__task") == "Task"
    assert normalize_tool_name("Custom") == "Custom"
    assert normalize_tool_name("") == ""


def test_bash_input():
    parsed = parse_tool_input("Bash", {"command": "ls", "timeout": 30.0, "run_in_background": "yes"})
    assert parsed == BashInput(command="ls", timeout=30, run_in_background=False)


def test_single_edit_becomes_one_operation():
    parsed = parse_tool_input("edit_file", {"file_path": "a.py", "old_string": "x", "new_string": "y"})
    assert isinstance(parsed, EditInput)
    assert len(parsed.edits) == 1
    assert parsed.edits[0].new_string == "y"


def test_todo_write_is_full_replacement():
    parsed = parse_tool_input("TodoWrite", {
        "todos": [
            {"content": "Write tests", "activeForm": "Writing tests", "status": "in_progress"},
            {"content": "Ship", "status": "someday"},
            "garbage",
        ]
    })
    assert isinstance(parsed, TodoWriteInput)
    assert [t.content for t in parsed.todos] == ["Write tests", "Ship"]
    assert parsed.todos[0].active_form == "Writing tests"
    assert parsed.todos[0].status is TodoStatus.IN_PROGRESS
    assert parsed.todos[1].status is TodoStatus.PENDING


def test_unknown_tool_is_generic():
    parsed = parse_tool_input("Frobnicate", '{"level": 3}')
    assert parsed == GenericInput(name="Frobnicate", values={"level": 3})


def test_typed_input_on_block():
    block = ToolUseBlock(id="t1", name="Task", input={"description": "explore", "prompt": "look"})
    assert block.typed_input == TaskInput(description="explore", prompt="look")
