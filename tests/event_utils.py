"""Builders for backend events used across the test suite."""

from __future__ import annotations

import json
from typing import Any

from codexdesk.protocol.events import Event, decode_event
from codexdesk.engine.scheduler import TickHandle
from codexdesk.transcript import InMemoryTranscriptStore, TranscriptChange


def wire(msg_type: str, stream_id: str = "", **fields: Any) -> dict[str, Any]:
    """Return an event as the backend writes it to stdout."""
    return {"id": stream_id, "msg": {"type": msg_type, **fields}}


def wire_line(msg_type: str, stream_id: str = "", **fields: Any) -> str:
    return json.dumps(wire(msg_type, stream_id, **fields))


def event(msg_type: str, stream_id: str = "", **fields: Any) -> Event:
    return decode_event(wire(msg_type, stream_id, **fields))


def exec_chunk(text: str) -> list[int]:
    return list(text.encode("utf-8"))


def record_changes(store: InMemoryTranscriptStore) -> list[TranscriptChange]:
    changes: list[TranscriptChange] = []
    store.changed.connect(changes.append)
    return changes


def updates(changes: list[TranscriptChange]) -> list[TranscriptChange]:
    return [change for change in changes if change.kind == "updated"]


class _ManualTimer:
    __slots__ = ("owner", "callback", "cancelled")

    def __init__(self, owner: ManualTickSource, callback) -> None:
        self.owner = owner
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self.owner.stop_on_cancel and self in self.owner.timers:
            self.owner.timers.remove(self)


class ManualTickSource:
    """Tick source driven by the test: nothing fires until :meth:`tick`.

    With ``stop_on_cancel=False`` cancelled timers still fire, like a native
    timer that was already queued when it got stopped.
    """

    def __init__(self, *, stop_on_cancel: bool = True) -> None:
        self.stop_on_cancel = stop_on_cancel
        self.timers: list[_ManualTimer] = []
        self.delays: list[int] = []

    def call_later(self, delay_ms: int, callback) -> TickHandle:
        timer = _ManualTimer(self, callback)
        self.timers.append(timer)
        self.delays.append(delay_ms)
        return timer

    @property
    def pending(self) -> int:
        return len(self.timers)

    def tick(self) -> int:
        """Fire every timer registered before this call; return how many fired."""
        due = list(self.timers)
        self.timers.clear()
        for timer in due:
            timer.callback()
        return len(due)
