"""Typed views of tool invocation inputs, keyed by tool name.

Tool inputs arrive as loosely-typed maps. Known tools get a dataclass with
defensive coercion; anything else falls back to ``GenericInput`` so new
tools keep rendering without a code change.

Adding a new tool shape requires only a single decorated function:

    @tool_input("MyTool")
    def _parse_my_tool(raw):
        return MyToolInput(...)
"""

from __future__ import annotations

import ast
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from chatloom.shared.models.blocks import TodoItem, TodoStatus

logger = logging.getLogger(__name__)


# ── Argument Parsing ──


def parse_args(arguments: Any) -> dict:
    """Coerce a tool input payload to a dict, falling back gracefully.

    Dicts pass through. Strings are tried as JSON, then as a Python repr,
    then wrapped as ``{"_raw": arguments}``. Anything else becomes ``{}``.
    """
    if isinstance(arguments, dict):
        return arguments
    if not arguments or not isinstance(arguments, str):
        return {}
    try:
        parsed = json.loads(arguments)
        if isinstance(parsed, dict):
            return parsed
        return {"_raw": arguments}
    except (json.JSONDecodeError, TypeError):
        pass
    try:
        parsed = ast.literal_eval(arguments)
        if isinstance(parsed, dict):
            return parsed
        return {"_raw": arguments}
    except (ValueError, SyntaxError):
        pass
    return {"_raw": arguments}


def _str(raw: dict, key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _opt_int(raw: dict, key: str) -> int | None:
    value = raw.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _bool(raw: dict, key: str) -> bool:
    return raw.get(key) is True


# ── Input shapes ──


@dataclass
class BashInput:
    command: str = ""
    description: str = ""
    run_in_background: bool = False
    timeout: int | None = None


@dataclass
class ReadInput:
    file_path: str = ""
    offset: int | None = None
    limit: int | None = None


@dataclass
class WriteInput:
    file_path: str = ""
    content: str = ""


@dataclass
class EditOperation:
    old_string: str = ""
    new_string: str = ""
    replace_all: bool = False


@dataclass
class EditInput:
    file_path: str = ""
    edits: list[EditOperation] = field(default_factory=list)


@dataclass
class SearchInput:
    """Grep and Glob share a shape."""
    pattern: str = ""
    path: str = ""
    glob: str = ""
    output_mode: str = ""


@dataclass
class WebInput:
    """WebSearch and WebFetch: one of ``query``/``url`` is set."""
    query: str = ""
    url: str = ""
    prompt: str = ""
    allowed_domains: list[str] = field(default_factory=list)


@dataclass
class TaskInput:
    description: str = ""
    prompt: str = ""
    subagent_type: str = ""


@dataclass
class TodoWriteInput:
    todos: list[TodoItem] = field(default_factory=list)


@dataclass
class PlanInput:
    plan: str = ""


@dataclass
class GenericInput:
    name: str = ""
    values: dict[str, Any] = field(default_factory=dict)


ToolInput = Union[
    BashInput, ReadInput, WriteInput, EditInput, SearchInput, WebInput,
    TaskInput, TodoWriteInput, PlanInput, GenericInput,
]


# ── Parser Registry ──

_PARSERS: dict[str, Callable[[dict], ToolInput]] = {}
_TOOL_NAME_ALIASES: dict[str, str] = {
    "read": "Read",
    "read_file": "Read",
    "write": "Write",
    "write_file": "Write",
    "edit": "Edit",
    "edit_file": "Edit",
    "multiedit": "MultiEdit",
    "bash": "Bash",
    "run_bash": "Bash",
    "glob": "Glob",
    "grep": "Grep",
    "websearch": "WebSearch",
    "webfetch": "WebFetch",
    "task": "Task",
    "agent": "Agent",
    "todowrite": "TodoWrite",
    "exitplanmode": "ExitPlanMode",
}


def normalize_tool_name(tool_name: str) -> str:
    """Normalize provider-specific tool aliases to canonical names."""
    if not tool_name:
        return ""
    bare_name = tool_name
    if bare_name.startswith("mcp__") and bare_name.count("__") >= 2:
        bare_name = bare_name.split("__", 2)[2]
    return _TOOL_NAME_ALIASES.get(bare_name.lower(), bare_name)


def tool_input(*names: str):
    """Decorator to register an input parser for the given tool names."""
    def decorator(fn: Callable[[dict], ToolInput]) -> Callable[[dict], ToolInput]:
        for name in names:
            _PARSERS[name] = fn
        return fn
    return decorator


def parse_tool_input(name: str, raw: Any) -> ToolInput:
    """Parse a raw input map into the shape registered for *name*."""
    args = parse_args(raw)
    canonical = normalize_tool_name(name)
    parser = _PARSERS.get(canonical)
    if parser is None:
        return GenericInput(name=name or "unknown", values=dict(args))
    return parser(args)


@tool_input("Bash")
def _parse_bash(raw: dict) -> BashInput:
    return BashInput(
        command=_str(raw, "command"),
        description=_str(raw, "description"),
        run_in_background=_bool(raw, "run_in_background"),
        timeout=_opt_int(raw, "timeout"),
    )


@tool_input("Read")
def _parse_read(raw: dict) -> ReadInput:
    return ReadInput(
        file_path=_str(raw, "file_path"),
        offset=_opt_int(raw, "offset"),
        limit=_opt_int(raw, "limit"),
    )


@tool_input("Write")
def _parse_write(raw: dict) -> WriteInput:
    return WriteInput(file_path=_str(raw, "file_path"), content=_str(raw, "content"))


@tool_input("Edit", "MultiEdit")
def _parse_edit(raw: dict) -> EditInput:
    edits: list[EditOperation] = []
    raw_edits = raw.get("edits")
    if isinstance(raw_edits, list):
        for item in raw_edits:
            if isinstance(item, dict):
                edits.append(EditOperation(
                    old_string=_str(item, "old_string"),
                    new_string=_str(item, "new_string"),
                    replace_all=_bool(item, "replace_all"),
                ))
    elif "old_string" in raw or "new_string" in raw:
        edits.append(EditOperation(
            old_string=_str(raw, "old_string"),
            new_string=_str(raw, "new_string"),
            replace_all=_bool(raw, "replace_all"),
        ))
    return EditInput(file_path=_str(raw, "file_path"), edits=edits)


@tool_input("Grep", "Glob")
def _parse_search(raw: dict) -> SearchInput:
    return SearchInput(
        pattern=_str(raw, "pattern"),
        path=_str(raw, "path"),
        glob=_str(raw, "glob"),
        output_mode=_str(raw, "output_mode"),
    )


@tool_input("WebSearch", "WebFetch")
def _parse_web(raw: dict) -> WebInput:
    domains = raw.get("allowed_domains")
    return WebInput(
        query=_str(raw, "query"),
        url=_str(raw, "url"),
        prompt=_str(raw, "prompt"),
        allowed_domains=[str(d) for d in domains] if isinstance(domains, list) else [],
    )


@tool_input("Task", "Agent")
def _parse_task(raw: dict) -> TaskInput:
    return TaskInput(
        description=_str(raw, "description"),
        prompt=_str(raw, "prompt"),
        subagent_type=_str(raw, "subagent_type"),
    )


def _parse_todo_status(value: Any) -> TodoStatus:
    try:
        return TodoStatus(value)
    except ValueError:
        logger.debug("Unknown todo status %r, defaulting to pending", value)
        return TodoStatus.PENDING


@tool_input("TodoWrite")
def _parse_todo_write(raw: dict) -> TodoWriteInput:
    # The todos list is always a full replacement, never a diff.
    todos: list[TodoItem] = []
    raw_todos = raw.get("todos")
    if isinstance(raw_todos, list):
        for item in raw_todos:
            if not isinstance(item, dict):
                continue
            todos.append(TodoItem(
                content=_str(item, "content"),
                active_form=_str(item, "activeForm"),
                status=_parse_todo_status(item.get("status")),
            ))
    return TodoWriteInput(todos=todos)


@tool_input("ExitPlanMode")
def _parse_plan(raw: dict) -> PlanInput:
    return PlanInput(plan=_str(raw, "plan"))
