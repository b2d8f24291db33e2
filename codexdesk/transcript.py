"""Transcript store interface and the in-memory store used by the desktop app."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Protocol

from .util.signals import Signal
from .util.time import utc_now_iso

logger = logging.getLogger(__name__)

EntryRole = Literal["user", "agent", "system"]

_UPDATABLE_FIELDS = frozenset({"content", "is_streaming", "role"})


@dataclass(slots=True)
class TranscriptEntry:
    """One row of a conversation transcript."""

    id: str
    role: EntryRole
    content: str
    timestamp: str = field(default_factory=utc_now_iso)
    is_streaming: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "is_streaming": self.is_streaming,
        }


class TranscriptStore(Protocol):
    """Sink for transcript intents issued by the event engine."""

    def append_entry(self, session_id: str, entry: TranscriptEntry) -> None:
        """Append *entry* to the conversation of *session_id*."""

    def update_entry(self, session_id: str, entry_id: str, **fields: Any) -> None:
        """Update fields of the entry identified by *entry_id*."""

    def set_loading(self, session_id: str, loading: bool) -> None:
        """Toggle the loading indicator of *session_id*."""

    def ensure_conversation_exists(self, session_id: str) -> None:
        """Create the conversation of *session_id* when missing."""


@dataclass(slots=True)
class Conversation:
    """Ordered transcript of one session."""

    id: str
    title: str = "New Chat"
    entries: list[TranscriptEntry] = field(default_factory=list)
    is_loading: bool = False
    created_at: str = field(default_factory=utc_now_iso)

    def find(self, entry_id: str) -> TranscriptEntry | None:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None


@dataclass(frozen=True, slots=True)
class TranscriptChange:
    """Notification emitted after every store mutation."""

    kind: Literal["created", "appended", "updated", "loading"]
    session_id: str
    entry_id: str | None = None


class InMemoryTranscriptStore:
    """Keep conversations in memory and announce changes through ``changed``.

    Writes follow last-write-wins semantics per entry id. Updating an entry
    that does not exist is logged and ignored: the engine may race a
    conversation reset and that must not take the process down.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self.changed = Signal()

    # ------------------------------------------------------------------
    def ensure_conversation_exists(self, session_id: str) -> None:
        if session_id in self._conversations:
            return
        logger.debug("Creating conversation for session %s", session_id)
        self._conversations[session_id] = Conversation(id=session_id)
        self.changed.emit(TranscriptChange(kind="created", session_id=session_id))

    # ------------------------------------------------------------------
    def append_entry(self, session_id: str, entry: TranscriptEntry) -> None:
        self.ensure_conversation_exists(session_id)
        self._conversations[session_id].entries.append(replace(entry))
        self.changed.emit(
            TranscriptChange(kind="appended", session_id=session_id, entry_id=entry.id)
        )

    # ------------------------------------------------------------------
    def update_entry(self, session_id: str, entry_id: str, **fields: Any) -> None:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"cannot update transcript fields: {sorted(unknown)}")
        conversation = self._conversations.get(session_id)
        entry = conversation.find(entry_id) if conversation is not None else None
        if entry is None:
            logger.warning(
                "Ignoring update for unknown entry %s in session %s", entry_id, session_id
            )
            return
        for name, value in fields.items():
            setattr(entry, name, value)
        self.changed.emit(
            TranscriptChange(kind="updated", session_id=session_id, entry_id=entry_id)
        )

    # ------------------------------------------------------------------
    def set_loading(self, session_id: str, loading: bool) -> None:
        self.ensure_conversation_exists(session_id)
        conversation = self._conversations[session_id]
        if conversation.is_loading == loading:
            return
        conversation.is_loading = loading
        self.changed.emit(TranscriptChange(kind="loading", session_id=session_id))

    # ------------------------------------------------------------------
    def conversation(self, session_id: str) -> Conversation | None:
        return self._conversations.get(session_id)

    def entries(self, session_id: str) -> list[TranscriptEntry]:
        conversation = self._conversations.get(session_id)
        return list(conversation.entries) if conversation is not None else []

    def is_loading(self, session_id: str) -> bool:
        conversation = self._conversations.get(session_id)
        return bool(conversation and conversation.is_loading)

    def session_ids(self) -> list[str]:
        return list(self._conversations)


__all__ = [
    "Conversation",
    "EntryRole",
    "InMemoryTranscriptStore",
    "TranscriptChange",
    "TranscriptEntry",
    "TranscriptStore",
]
