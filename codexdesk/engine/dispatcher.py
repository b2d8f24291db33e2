"""Route decoded backend events to the engine components."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from ..protocol.events import (
    AgentDelta,
    AgentFinal,
    ApprovalRequested,
    BackgroundEvent,
    Diff,
    ErrorReported,
    Event,
    ExecBegin,
    ExecEnd,
    ExecOutputDelta,
    PatchApplyBegin,
    PatchApplyEnd,
    PlanUpdate,
    ReasoningDelta,
    ReasoningFinal,
    ReasoningSectionBreak,
    SessionEstablished,
    ShutdownComplete,
    TaskComplete,
    TaskStarted,
    TokenCount,
    TurnAborted,
    TurnComplete,
    TurnStarted,
)
from ..telemetry import log_event
from .approvals import ApprovalSurface
from .dedup import DiffSeenSet
from .lifecycle import TurnLifecycle
from .streams import ChannelKind, StreamBufferManager
from .writer import TranscriptWriter

logger = logging.getLogger(__name__)


def decode_exec_chunk(chunk: Sequence[int]) -> str:
    """Decode raw exec output as UTF-8, falling back to the comma-joined byte values."""
    try:
        return bytes(chunk).decode("utf-8")
    except (UnicodeDecodeError, ValueError):
        return ",".join(str(value) for value in chunk)


def exec_header(command: Sequence[str], cwd: str) -> str:
    lines: list[str] = []
    if cwd:
        lines.append(f"cwd: {cwd}")
    lines.append(f"$ {' '.join(command)}")
    return "\n".join(lines) + "\n"


def format_diff(raw_diff: str) -> str:
    return f"```diff\n{raw_diff}\n```"


def format_plan(plan: PlanUpdate) -> str:
    lines = ["Plan update:"]
    lines.extend(f"- [{item.status}] {item.step}" for item in plan.plan)
    return "\n".join(lines)


class EventDispatcher:
    """Synchronous, order-preserving switch over event payloads.

    The dispatcher keeps no state of its own; everything it touches belongs
    to the collaborators handed in at construction.
    """

    def __init__(
        self,
        *,
        writer: TranscriptWriter,
        streams: StreamBufferManager,
        lifecycle: TurnLifecycle,
        diffs: DiffSeenSet,
        approvals: ApprovalSurface,
        on_token_count: Callable[[TokenCount], None] | None = None,
    ) -> None:
        self._writer = writer
        self._streams = streams
        self._lifecycle = lifecycle
        self._diffs = diffs
        self._approvals = approvals
        self._on_token_count = on_token_count

    def dispatch(self, event: Event) -> None:
        stream_id = event.stream_id
        payload = event.payload
        match payload:
            case SessionEstablished(session_id=session_id, model=model):
                log_event(
                    "SESSION_ESTABLISHED",
                    {"session_id": session_id, "model": model},
                )
                self._writer.ensure_conversation()
            case TurnStarted() | TaskStarted():
                self._lifecycle.start()
            case TurnComplete() | TaskComplete():
                self._lifecycle.complete()
            case TurnAborted():
                self._lifecycle.abort()
            case AgentDelta(delta=delta):
                self._streams.begin_or_append_delta(ChannelKind.AGENT, stream_id, delta)
            case AgentFinal(text=text):
                if text:
                    self._streams.replace_or_emit(ChannelKind.AGENT, stream_id, text)
            case ReasoningDelta(delta=delta):
                self._streams.begin_or_append_delta(ChannelKind.REASONING, stream_id, delta)
            case ReasoningFinal(text=text):
                self._streams.finalize(ChannelKind.REASONING, stream_id, text or None)
                self._writer.set_loading(False)
            case ReasoningSectionBreak():
                self._streams.append_section_break(stream_id)
            case Diff(unified_diff=raw_diff):
                if raw_diff and self._diffs.should_show(raw_diff):
                    self._writer.system(format_diff(raw_diff), kind="diff")
            case ExecBegin(call_id=call_id, command=command, cwd=cwd):
                self._streams.open(ChannelKind.EXEC, call_id, exec_header(command, cwd))
                self._writer.set_loading(True)
            case ExecOutputDelta(call_id=call_id, chunk=chunk):
                self._streams.begin_or_append_delta(
                    ChannelKind.EXEC, call_id, decode_exec_chunk(chunk)
                )
            case ExecEnd(call_id=call_id, exit_code=exit_code):
                entry = self._streams.get(ChannelKind.EXEC, call_id)
                if entry is not None:
                    self._streams.finalize(
                        ChannelKind.EXEC, call_id, f"{entry.buffer}\nexit {exit_code}"
                    )
                self._writer.set_loading(False)
            case PatchApplyBegin():
                self._writer.system("Applying patch…", kind="patch-begin")
                self._writer.set_loading(True)
            case PatchApplyEnd(success=success):
                outcome = "ok" if success else "failed"
                self._writer.system(f"Patch apply {outcome}", kind="patch-end")
                self._writer.set_loading(False)
            case ApprovalRequested():
                self._approvals.on_approval_event(event)
            case ErrorReported(message=message):
                log_event("BACKEND_ERROR", {"message": message}, level=logging.WARNING)
                self._writer.system(f"Error: {message}", kind="error")
                self._writer.set_loading(False)
            case PlanUpdate():
                self._writer.system(format_plan(payload), kind="plan")
            case TokenCount():
                if self._on_token_count is not None:
                    self._on_token_count(payload)
            case BackgroundEvent(message=message):
                logger.info("Background event: %s", message)
            case ShutdownComplete():
                logger.info("Backend shutdown completed")
                self._lifecycle.reset()
                self._writer.set_loading(False)
            case _:
                logger.debug("Unhandled event type: %s", getattr(payload, "tag", payload))


__all__ = [
    "EventDispatcher",
    "decode_exec_chunk",
    "exec_header",
    "format_diff",
    "format_plan",
]
