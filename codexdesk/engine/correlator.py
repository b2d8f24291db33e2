"""Filter the shared event feed down to one logical session."""

from __future__ import annotations

from ..protocol.events import Event, SessionEstablished

LOCAL_SESSION_PREFIX = "codex-event-"


def event_session_id(event: Event) -> str | None:
    """Return the session an event declares, or ``None`` for session-agnostic events."""
    payload = event.payload
    if isinstance(payload, SessionEstablished):
        return payload.session_id
    return None


def derive_target_session_id(local_session_id: object) -> str | None:
    """Strip the local prefix from *local_session_id*; ``None`` if nothing usable remains."""
    if not isinstance(local_session_id, str):
        return None
    text = local_session_id.strip()
    if text.startswith(LOCAL_SESSION_PREFIX):
        text = text[len(LOCAL_SESSION_PREFIX):]
    return text or None


class SessionCorrelator:
    """Keep events unless they positively belong to another session."""

    __slots__ = ("_target",)

    def __init__(self, local_session_id: object) -> None:
        self._target = derive_target_session_id(local_session_id)

    @property
    def target_session_id(self) -> str | None:
        return self._target

    def should_keep(self, event: Event) -> bool:
        if self._target is None:
            return True
        declared = event_session_id(event)
        return declared is None or declared == self._target


__all__ = [
    "LOCAL_SESSION_PREFIX",
    "SessionCorrelator",
    "derive_target_session_id",
    "event_session_id",
]
