"""Envelope types delivered by the transport.

Each envelope corresponds to one decoded protocol message, parsed into a
typed dataclass for safe consumption by the assembler. Decoding never
raises: missing or wrong-typed fields fall back to their defaults and are
listed in ``malformed_fields``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import MISSING, Field, dataclass, field, fields
from typing import Any

from chatloom.shared.tool_input import parse_args

logger = logging.getLogger(__name__)


@dataclass
class Envelope:
    """Base envelope: a tagged payload plus an optional session id."""
    event_type: str = ""
    session_id: str | None = None
    malformed_fields: list[str] = field(default_factory=list, repr=False, compare=False)
    # A session tag was present but unusable; such envelopes belong to no view.
    session_tag_malformed: bool = field(default=False, repr=False, compare=False)


@dataclass
class AssistantTextDelta(Envelope):
    event_type: str = "assistant_text_delta"
    text: str = ""


@dataclass
class ThinkingStart(Envelope):
    event_type: str = "thinking_start"


@dataclass
class ThinkingDelta(Envelope):
    event_type: str = "thinking_delta"
    text: str = ""


@dataclass
class ToolUseEvent(Envelope):
    event_type: str = "tool_use"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    parent_scope_id: str | None = None


@dataclass
class ToolResultEvent(Envelope):
    event_type: str = "tool_result"
    tool_use_id: str = ""
    content: str = ""
    is_error: bool = False


@dataclass
class LongRunningStatus(Envelope):
    event_type: str = "long_running_status"
    handle: str = ""
    kind: str = ""  # "install", "build" or "test"
    command: str = ""
    output_delta: str = ""
    status: str = "running"
    error: str = ""
    started_at: float | None = None


@dataclass
class Marker(Envelope):
    """Context-cleared / history-compacted divider."""
    event_type: str = "marker"
    text: str = ""


@dataclass
class UserMessageEvent(Envelope):
    event_type: str = "user_message"
    content: str = ""
    attachments: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ContextUsageEvent(Envelope):
    """Per-turn token usage; recorded even for sessions not in view."""
    event_type: str = "context_usage"
    input_tokens: int = 0
    output_tokens: int = 0
    context_window: int = 0
    context_percentage: float = 0.0


@dataclass
class TokenUpdate(Envelope):
    event_type: str = "token_update"
    output_tokens: int = 0


@dataclass
class TurnResult(Envelope):
    event_type: str = "result"
    success: bool = True


@dataclass
class ErrorEvent(Envelope):
    event_type: str = "error"
    message: str = ""
    error_type: str = ""


@dataclass
class CompactLoading(Envelope):
    event_type: str = "compact_loading"


@dataclass
class CompactComplete(Envelope):
    event_type: str = "compact_complete"
    pre_tokens: int = 0


@dataclass
class BackgroundProcessStarted(Envelope):
    event_type: str = "background_process_started"
    handle: str = ""
    command: str = ""
    description: str = ""
    started_at: float | None = None


@dataclass
class BackgroundProcessKilled(Envelope):
    event_type: str = "background_process_killed"
    handle: str = ""


@dataclass
class BackgroundProcessExited(Envelope):
    event_type: str = "background_process_exited"
    handle: str = ""
    exit_code: int = 0


@dataclass
class Keepalive(Envelope):
    event_type: str = "keepalive"


@dataclass
class UnknownEnvelope(Envelope):
    """An envelope whose kind is not recognized; keeps the raw payload."""
    raw: dict[str, Any] = field(default_factory=dict)


# Map of envelope kind strings to dataclass constructors
_EVENT_MAP: dict[str, type[Envelope]] = {
    "assistant_text_delta": AssistantTextDelta,
    "thinking_start": ThinkingStart,
    "thinking_delta": ThinkingDelta,
    "tool_use": ToolUseEvent,
    "tool_result": ToolResultEvent,
    "long_running_status": LongRunningStatus,
    "marker": Marker,
    "user_message": UserMessageEvent,
    "context_usage": ContextUsageEvent,
    "token_update": TokenUpdate,
    "result": TurnResult,
    "error": ErrorEvent,
    "compact_loading": CompactLoading,
    "compact_complete": CompactComplete,
    "background_process_started": BackgroundProcessStarted,
    "background_process_killed": BackgroundProcessKilled,
    "background_process_exited": BackgroundProcessExited,
    "keepalive": Keepalive,
}

# Older server builds use these kinds; each maps onto a current kind plus
# fixed field values.
_LEGACY_KINDS: dict[str, tuple[str, dict[str, Any]]] = {
    "assistant_message": ("assistant_text_delta", {}),
    "long_running_command_started": ("long_running_status", {"status": "running"}),
    "command_output_chunk": ("long_running_status", {"status": "running"}),
    "long_running_command_completed": ("long_running_status", {"status": "completed"}),
    "long_running_command_failed": ("long_running_status", {"status": "failed"}),
}

# Wire names that don't follow plain camelCase -> snake_case.
_FIELD_ALIASES: dict[str, str] = {
    "sessionId": "session_id",
    "toolId": "id",
    "toolName": "name",
    "toolInput": "input",
    "toolUseId": "tool_use_id",
    "parentScopeId": "parent_scope_id",
    "parentToolUseId": "parent_scope_id",
    "parent_tool_use_id": "parent_scope_id",
    "bashId": "handle",
    "commandType": "kind",
    "commandKind": "kind",
    "exitCode": "exit_code",
    "errorType": "error_type",
    "preTokens": "pre_tokens",
    "isError": "is_error",
}

# Per-kind renames applied after aliasing.
_KIND_FIELD_ALIASES: dict[str, dict[str, str]] = {
    "assistant_text_delta": {"content": "text"},
    "thinking_delta": {"content": "text"},
    "marker": {"content": "text"},
    "long_running_status": {"output": "output_delta"},
    "error": {"error": "message"},
}

# Base fields decoded separately from the per-kind payload.
_ENVELOPE_META = frozenset({
    "event_type", "session_id", "malformed_fields", "session_tag_malformed",
})

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _field_default(f: Field) -> Any:
    if f.default is not MISSING:
        return f.default
    if f.default_factory is not MISSING:
        return f.default_factory()
    return None


def _join_text_blocks(value: list) -> str | None:
    """Flatten SDK-style ``[{"type": "text", "text": ...}]`` content."""
    parts = [
        item["text"] for item in value
        if isinstance(item, dict) and isinstance(item.get("text"), str)
    ]
    return "".join(parts) if parts or not value else None


def _coerce(type_name: str, value: Any, default: Any) -> tuple[Any, bool]:
    """Coerce *value* to the declared field type. Returns (value, ok)."""
    optional = type_name.endswith("| None")
    base = type_name.replace("| None", "").strip()
    if value is None:
        return default, optional or default is None
    if base == "str":
        if isinstance(value, str):
            return (value or None) if optional else value, True
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value), True
        if isinstance(value, list):
            joined = _join_text_blocks(value)
            if joined is not None:
                return joined, True
        return default, False
    if base == "bool":
        if isinstance(value, bool):
            return value, True
        return default, False
    if base in ("int", "float"):
        cast = int if base == "int" else float
        if isinstance(value, bool):
            return default, False
        if isinstance(value, (int, float)):
            return cast(value), True
        if isinstance(value, str):
            try:
                return cast(float(value)), True
            except ValueError:
                return default, False
        return default, False
    if base.startswith("dict"):
        if isinstance(value, dict):
            return value, True
        if isinstance(value, str):
            return parse_args(value), True
        return {}, False
    if base.startswith("list"):
        if isinstance(value, list):
            return [v for v in value if isinstance(v, dict)], True
        return [], False
    return value, True


def _session_tag(data: dict[str, Any]) -> tuple[str | None, bool]:
    """Read the session tag. Returns (session_id, ok).

    Absent, null and empty tags mean "untagged". Any other value that is
    not a string or number is unusable and must not be read as untagged.
    """
    value = data.get("session_id", data.get("sessionId"))
    if value is None or value == "":
        return None, True
    if isinstance(value, str):
        return value, True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value), True
    return None, False


def _kind_of(data: dict[str, Any]) -> str:
    for key in ("type", "event", "kind"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def dict_to_envelope(data: Any) -> Envelope:
    """Convert a decoded transport message to a typed envelope."""
    if not isinstance(data, dict):
        return UnknownEnvelope(event_type="", raw={"_raw": data})

    raw_kind = _kind_of(data)
    kind, fixed = _LEGACY_KINDS.get(raw_kind, (raw_kind, {}))
    session_id, session_ok = _session_tag(data)
    if not session_ok:
        logger.debug(
            "Unusable session id in %s envelope: %r",
            raw_kind or "<missing type>", data.get("session_id", data.get("sessionId")),
        )
    cls = _EVENT_MAP.get(kind)
    if cls is None:
        return UnknownEnvelope(
            event_type=raw_kind,
            session_id=session_id,
            malformed_fields=[] if session_ok else ["session_id"],
            session_tag_malformed=not session_ok,
            raw=dict(data),
        )

    kind_aliases = _KIND_FIELD_ALIASES.get(kind, {})
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        # "kind" is the discriminator unless "type" already carries it.
        if key in ("type", "event") or (key == "kind" and "type" not in data and "event" not in data):
            continue
        name = _FIELD_ALIASES.get(key) or _snake(key)
        name = kind_aliases.get(name, name)
        if name != key and name in data:
            continue  # the canonical key wins over its alias
        normalized[name] = value
    normalized.update(fixed)

    kwargs: dict[str, Any] = {"session_id": session_id}
    malformed: list[str] = [] if session_ok else ["session_id"]
    for f in fields(cls):
        if f.name in _ENVELOPE_META or f.name not in normalized:
            continue
        value, ok = _coerce(str(f.type), normalized[f.name], _field_default(f))
        if not ok:
            malformed.append(f.name)
            logger.debug(
                "Malformed field %r in %s envelope: %r", f.name, kind, normalized[f.name],
            )
        kwargs[f.name] = value

    envelope = cls(**kwargs)
    envelope.malformed_fields = malformed
    envelope.session_tag_malformed = not session_ok
    return envelope
