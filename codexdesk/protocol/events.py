"""Typed events emitted by the agent backend and their wire decoder.

Every line the backend writes to stdout is a JSON object of the form
``{"id": <stream id>, "msg": {"type": <tag>, ...}}``.  The ``id`` is an opaque
correlation key shared by all deltas and finals of one emission; the ``msg``
object is a closed tagged union decoded into one of the payload dataclasses
below.  Payloads are immutable once decoded.

The decoder accepts both the canonical tag of a payload and the aliases the
backend actually puts on the wire (``agent_message_delta`` for
``agent_delta`` and so on).
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal


class ProtocolDecodeError(ValueError):
    """Raised when a backend event has an unknown tag or malformed fields."""


ApprovalKind = Literal["exec", "patch"]


@dataclass(frozen=True, slots=True)
class SessionEstablished:
    tag: ClassVar[str] = "session_established"

    session_id: str
    model: str | None = None


@dataclass(frozen=True, slots=True)
class TurnStarted:
    tag: ClassVar[str] = "turn_started"


@dataclass(frozen=True, slots=True)
class TurnComplete:
    tag: ClassVar[str] = "turn_complete"

    response_id: str | None = None


@dataclass(frozen=True, slots=True)
class TurnAborted:
    tag: ClassVar[str] = "turn_aborted"


@dataclass(frozen=True, slots=True)
class TaskStarted:
    tag: ClassVar[str] = "task_started"


@dataclass(frozen=True, slots=True)
class TaskComplete:
    tag: ClassVar[str] = "task_complete"

    last_agent_message: str | None = None


@dataclass(frozen=True, slots=True)
class AgentDelta:
    tag: ClassVar[str] = "agent_delta"

    delta: str


@dataclass(frozen=True, slots=True)
class AgentFinal:
    tag: ClassVar[str] = "agent_final"

    text: str


@dataclass(frozen=True, slots=True)
class ReasoningDelta:
    tag: ClassVar[str] = "reasoning_delta"

    delta: str


@dataclass(frozen=True, slots=True)
class ReasoningFinal:
    tag: ClassVar[str] = "reasoning_final"

    text: str


@dataclass(frozen=True, slots=True)
class ReasoningSectionBreak:
    tag: ClassVar[str] = "reasoning_section_break"


@dataclass(frozen=True, slots=True)
class Diff:
    tag: ClassVar[str] = "diff"

    unified_diff: str


@dataclass(frozen=True, slots=True)
class ExecBegin:
    tag: ClassVar[str] = "exec_begin"

    call_id: str
    command: tuple[str, ...]
    cwd: str = ""


@dataclass(frozen=True, slots=True)
class ExecOutputDelta:
    """Raw output bytes of a running command, kept as integers as on the wire."""

    tag: ClassVar[str] = "exec_output_delta"

    call_id: str
    chunk: tuple[int, ...]
    stream: str | None = None


@dataclass(frozen=True, slots=True)
class ExecEnd:
    tag: ClassVar[str] = "exec_end"

    call_id: str
    exit_code: int


@dataclass(frozen=True, slots=True)
class PatchApplyBegin:
    tag: ClassVar[str] = "patch_apply_begin"


@dataclass(frozen=True, slots=True)
class PatchApplyEnd:
    tag: ClassVar[str] = "patch_apply_end"

    success: bool


@dataclass(frozen=True, slots=True)
class ApprovalRequested:
    tag: ClassVar[str] = "approval_request"

    kind: ApprovalKind
    command: str | None = None
    cwd: str | None = None
    patch: str | None = None
    files: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ErrorReported:
    tag: ClassVar[str] = "error"

    message: str


@dataclass(frozen=True, slots=True)
class PlanItem:
    step: str
    status: str


@dataclass(frozen=True, slots=True)
class PlanUpdate:
    tag: ClassVar[str] = "plan_update"

    plan: tuple[PlanItem, ...] = ()


@dataclass(frozen=True, slots=True)
class TokenCount:
    tag: ClassVar[str] = "token_count"

    input_tokens: int | None = None
    cached_input_tokens: int | None = None
    output_tokens: int | None = None
    reasoning_output_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True, slots=True)
class BackgroundEvent:
    tag: ClassVar[str] = "background_event"

    message: str = ""


@dataclass(frozen=True, slots=True)
class ShutdownComplete:
    tag: ClassVar[str] = "shutdown_complete"


Payload = (
    SessionEstablished
    | TurnStarted
    | TurnComplete
    | TurnAborted
    | TaskStarted
    | TaskComplete
    | AgentDelta
    | AgentFinal
    | ReasoningDelta
    | ReasoningFinal
    | ReasoningSectionBreak
    | Diff
    | ExecBegin
    | ExecOutputDelta
    | ExecEnd
    | PatchApplyBegin
    | PatchApplyEnd
    | ApprovalRequested
    | ErrorReported
    | PlanUpdate
    | TokenCount
    | BackgroundEvent
    | ShutdownComplete
)


@dataclass(frozen=True, slots=True)
class Event:
    """One decoded backend event."""

    stream_id: str
    payload: Payload
    raw_type: str = field(default="", compare=False)

    @property
    def tag(self) -> str:
        return self.payload.tag


# ---------------------------------------------------------------------------
# field helpers


def _require_str(msg: Mapping[str, Any], key: str) -> str:
    value = msg.get(key)
    if not isinstance(value, str):
        raise ProtocolDecodeError(
            f"{msg.get('type')!r} event requires string field {key!r}"
        )
    return value


def _optional_str(msg: Mapping[str, Any], key: str) -> str | None:
    value = msg.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolDecodeError(
            f"{msg.get('type')!r} event field {key!r} must be a string"
        )
    return value


def _require_int(msg: Mapping[str, Any], key: str) -> int:
    value = msg.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolDecodeError(
            f"{msg.get('type')!r} event requires integer field {key!r}"
        )
    return value


def _optional_int(msg: Mapping[str, Any], key: str) -> int | None:
    value = msg.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolDecodeError(
            f"{msg.get('type')!r} event field {key!r} must be an integer"
        )
    return value


def _str_sequence(msg: Mapping[str, Any], key: str, *, required: bool) -> tuple[str, ...]:
    value = msg.get(key)
    if value is None and not required:
        return ()
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise ProtocolDecodeError(
            f"{msg.get('type')!r} event requires list field {key!r}"
        )
    return tuple(str(item) for item in value)


def _byte_chunk(msg: Mapping[str, Any]) -> tuple[int, ...]:
    value = msg.get("chunk")
    if value is None:
        return ()
    if isinstance(value, (bytes, bytearray)):
        return tuple(value)
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise ProtocolDecodeError("exec output chunk must be a list of bytes")
    chunk: list[int] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            raise ProtocolDecodeError("exec output chunk must contain integers")
        chunk.append(item)
    return tuple(chunk)


def _plan_items(msg: Mapping[str, Any]) -> tuple[PlanItem, ...]:
    raw_plan = msg.get("plan") or ()
    if isinstance(raw_plan, (str, Mapping)) or not isinstance(raw_plan, Sequence):
        raise ProtocolDecodeError("plan_update requires a list of plan items")
    items: list[PlanItem] = []
    for entry in raw_plan:
        if not isinstance(entry, Mapping):
            raise ProtocolDecodeError("plan items must be objects")
        items.append(
            PlanItem(step=str(entry.get("step", "")), status=str(entry.get("status", "")))
        )
    return tuple(items)


# ---------------------------------------------------------------------------
# per-tag decoders

_Decoder = Callable[[Mapping[str, Any]], Payload]


def _token_count(msg: Mapping[str, Any]) -> TokenCount:
    return TokenCount(
        input_tokens=_optional_int(msg, "input_tokens"),
        cached_input_tokens=_optional_int(msg, "cached_input_tokens"),
        output_tokens=_optional_int(msg, "output_tokens"),
        reasoning_output_tokens=_optional_int(msg, "reasoning_output_tokens"),
        total_tokens=_optional_int(msg, "total_tokens"),
    )


def _agent_final(msg: Mapping[str, Any]) -> AgentFinal:
    text = _optional_str(msg, "message")
    if text is None:
        text = _optional_str(msg, "text")
    return AgentFinal(text=text or "")


def _exec_approval(msg: Mapping[str, Any]) -> ApprovalRequested:
    return ApprovalRequested(
        kind="exec",
        command=_require_str(msg, "command"),
        cwd=_optional_str(msg, "cwd"),
    )


def _patch_approval(msg: Mapping[str, Any]) -> ApprovalRequested:
    return ApprovalRequested(
        kind="patch",
        patch=_optional_str(msg, "patch"),
        files=_str_sequence(msg, "files", required=False),
    )


def _generic_approval(msg: Mapping[str, Any]) -> ApprovalRequested:
    kind = msg.get("kind")
    if kind == "exec":
        return _exec_approval(msg)
    if kind == "patch":
        return _patch_approval(msg)
    raise ProtocolDecodeError(f"unknown approval kind: {kind!r}")


_DECODERS: dict[str, _Decoder] = {
    "session_established": lambda m: SessionEstablished(
        session_id=_require_str(m, "session_id"), model=_optional_str(m, "model")
    ),
    "turn_started": lambda m: TurnStarted(),
    "turn_complete": lambda m: TurnComplete(response_id=_optional_str(m, "response_id")),
    "turn_aborted": lambda m: TurnAborted(),
    "task_started": lambda m: TaskStarted(),
    "task_complete": lambda m: TaskComplete(
        last_agent_message=_optional_str(m, "last_agent_message")
    ),
    "agent_delta": lambda m: AgentDelta(delta=_require_str(m, "delta")),
    "agent_final": _agent_final,
    "reasoning_delta": lambda m: ReasoningDelta(delta=_require_str(m, "delta")),
    "reasoning_final": lambda m: ReasoningFinal(text=_optional_str(m, "text") or ""),
    "reasoning_section_break": lambda m: ReasoningSectionBreak(),
    "diff": lambda m: Diff(
        unified_diff=_optional_str(m, "unified_diff")
        or _optional_str(m, "unifiedDiffText")
        or ""
    ),
    "exec_begin": lambda m: ExecBegin(
        call_id=_require_str(m, "call_id"),
        command=_str_sequence(m, "command", required=True),
        cwd=_optional_str(m, "cwd") or "",
    ),
    "exec_output_delta": lambda m: ExecOutputDelta(
        call_id=_require_str(m, "call_id"),
        chunk=_byte_chunk(m),
        stream=_optional_str(m, "stream"),
    ),
    "exec_end": lambda m: ExecEnd(
        call_id=_require_str(m, "call_id"), exit_code=_require_int(m, "exit_code")
    ),
    "patch_apply_begin": lambda m: PatchApplyBegin(),
    "patch_apply_end": lambda m: PatchApplyEnd(success=bool(m.get("success"))),
    "approval_request": _generic_approval,
    "error": lambda m: ErrorReported(message=_optional_str(m, "message") or ""),
    "plan_update": lambda m: PlanUpdate(plan=_plan_items(m)),
    "token_count": _token_count,
    "background_event": lambda m: BackgroundEvent(message=_optional_str(m, "message") or ""),
    "shutdown_complete": lambda m: ShutdownComplete(),
}

WIRE_ALIASES: dict[str, str] = {
    "session_configured": "session_established",
    "agent_message_delta": "agent_delta",
    "agent_message": "agent_final",
    "agent_reasoning_delta": "reasoning_delta",
    "agent_reasoning_raw_content_delta": "reasoning_delta",
    "agent_reasoning": "reasoning_final",
    "agent_reasoning_raw_content": "reasoning_final",
    "agent_reasoning_section_break": "reasoning_section_break",
    "turn_diff": "diff",
    "exec_command_begin": "exec_begin",
    "exec_command_output_delta": "exec_output_delta",
    "exec_command_end": "exec_end",
    "token_count_update": "token_count",
}

_APPROVAL_ALIASES: dict[str, _Decoder] = {
    "exec_approval_request": _exec_approval,
    "patch_approval_request": _patch_approval,
    "apply_patch_approval_request": _patch_approval,
}


def canonical_tag(raw_type: str) -> str | None:
    """Return the canonical tag for *raw_type* or ``None`` when unknown."""
    if raw_type in _DECODERS:
        return raw_type
    if raw_type in _APPROVAL_ALIASES:
        return ApprovalRequested.tag
    return WIRE_ALIASES.get(raw_type)


def decode_payload(msg: Mapping[str, Any]) -> Payload:
    """Decode the ``msg`` object of a backend event."""
    raw_type = msg.get("type")
    if not isinstance(raw_type, str) or not raw_type:
        raise ProtocolDecodeError("event message is missing its 'type' tag")
    approval_decoder = _APPROVAL_ALIASES.get(raw_type)
    if approval_decoder is not None:
        return approval_decoder(msg)
    tag = canonical_tag(raw_type)
    if tag is None:
        raise ProtocolDecodeError(f"unknown event type: {raw_type!r}")
    return _DECODERS[tag](msg)


def decode_event(raw: Mapping[str, Any] | str | bytes) -> Event:
    """Decode one backend event from a JSON line or an already parsed mapping."""
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProtocolDecodeError(f"invalid JSON event: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ProtocolDecodeError("event must be a JSON object")
    msg = raw.get("msg")
    if not isinstance(msg, Mapping):
        raise ProtocolDecodeError("event is missing its 'msg' object")
    stream_id = raw.get("id")
    if stream_id is None:
        stream_id = ""
    elif not isinstance(stream_id, str):
        stream_id = str(stream_id)
    payload = decode_payload(msg)
    return Event(stream_id=stream_id, payload=payload, raw_type=str(msg.get("type")))


__all__ = [
    "AgentDelta",
    "AgentFinal",
    "ApprovalKind",
    "ApprovalRequested",
    "BackgroundEvent",
    "Diff",
    "ErrorReported",
    "Event",
    "ExecBegin",
    "ExecEnd",
    "ExecOutputDelta",
    "PatchApplyBegin",
    "PatchApplyEnd",
    "Payload",
    "PlanItem",
    "PlanUpdate",
    "ProtocolDecodeError",
    "ReasoningDelta",
    "ReasoningFinal",
    "ReasoningSectionBreak",
    "SessionEstablished",
    "ShutdownComplete",
    "TaskComplete",
    "TaskStarted",
    "TokenCount",
    "TurnAborted",
    "TurnComplete",
    "TurnStarted",
    "WIRE_ALIASES",
    "canonical_tag",
    "decode_event",
    "decode_payload",
]
