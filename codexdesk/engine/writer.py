"""Transcript intents issued on behalf of one session."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from ..transcript import EntryRole, TranscriptEntry, TranscriptStore


def new_entry_id(session_id: str, kind: str) -> str:
    """Return a transcript entry id unique within the process."""
    return f"{session_id}-{kind}-{uuid4().hex}"


class TranscriptWriter:
    """Bind a :class:`TranscriptStore` to a session id.

    Appends always make sure the conversation exists first, so the first
    event of a session never lands in a conversation nobody created.
    """

    __slots__ = ("_store", "_session_id")

    def __init__(self, store: TranscriptStore, session_id: str) -> None:
        self._store = store
        self._session_id = session_id

    @property
    def session_id(self) -> str:
        return self._session_id

    def ensure_conversation(self) -> None:
        self._store.ensure_conversation_exists(self._session_id)

    def append(
        self,
        role: EntryRole,
        content: str,
        *,
        kind: str,
        streaming: bool = False,
    ) -> str:
        """Append a new entry and return its id."""
        entry = TranscriptEntry(
            id=new_entry_id(self._session_id, kind),
            role=role,
            content=content,
            is_streaming=streaming,
        )
        self._store.ensure_conversation_exists(self._session_id)
        self._store.append_entry(self._session_id, entry)
        return entry.id

    def system(self, content: str, *, kind: str = "system") -> str:
        return self.append("system", content, kind=kind)

    def update(self, entry_id: str, **fields: Any) -> None:
        self._store.update_entry(self._session_id, entry_id, **fields)

    def set_loading(self, loading: bool) -> None:
        self._store.set_loading(self._session_id, loading)


__all__ = ["TranscriptWriter", "new_entry_id"]
