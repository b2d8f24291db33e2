"""Per-channel stream buffers backing the live transcript entries.

The manager owns one explicit map ``(channel, stream_id) -> StreamEntry``.
Each entry remembers the transcript row it writes into and the text
accumulated so far.  Incremental deltas only touch the buffer and request a
coalesced flush; full restatements and finalization write straight away.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ..transcript import EntryRole
from .scheduler import FlushScheduler
from .writer import TranscriptWriter

logger = logging.getLogger(__name__)

SECTION_BREAK = "\n\n"


class ChannelKind(str, Enum):
    """Independent stream-id namespaces."""

    AGENT = "agent"
    REASONING = "reasoning"
    EXEC = "exec"


_ROLES: dict[ChannelKind, EntryRole] = {
    ChannelKind.AGENT: "agent",
    ChannelKind.REASONING: "agent",
    ChannelKind.EXEC: "system",
}

StreamKey = tuple[ChannelKind, str]


@dataclass(slots=True)
class StreamEntry:
    """Live buffer of one stream id.

    ``target_entry_id`` never changes; a restatement with different content
    registers a new :class:`StreamEntry` instead.
    """

    target_entry_id: str
    buffer: str = ""
    streaming: bool = True


class StreamBufferManager:
    """Track stream buffers for the agent, reasoning and exec channels."""

    def __init__(self, writer: TranscriptWriter, scheduler: FlushScheduler) -> None:
        self._writer = writer
        self._scheduler = scheduler
        self._entries: dict[StreamKey, StreamEntry] = {}

    # ------------------------------------------------------------------
    def get(self, channel: ChannelKind, stream_id: str) -> StreamEntry | None:
        return self._entries.get((channel, stream_id))

    def open_stream_ids(self, channel: ChannelKind | None = None) -> list[str]:
        return [
            stream_id
            for kind, stream_id in self._entries
            if channel is None or kind is channel
        ]

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    def open(self, channel: ChannelKind, stream_id: str, initial_text: str = "") -> StreamEntry:
        """Start a streaming transcript entry whose buffer begins with *initial_text*."""
        key = (channel, stream_id)
        previous = self._entries.get(key)
        if previous is not None:
            logger.debug("Reopening %s stream %s", channel.value, stream_id)
            self._settle(key, previous)
        entry_id = self._writer.append(
            _ROLES[channel], initial_text, kind=channel.value, streaming=True
        )
        entry = StreamEntry(target_entry_id=entry_id, buffer=initial_text)
        self._entries[key] = entry
        return entry

    def begin_or_append_delta(self, channel: ChannelKind, stream_id: str, delta: str) -> StreamEntry:
        """Append *delta* to the stream, opening it on first sight."""
        entry = self._entries.get((channel, stream_id))
        if entry is None:
            entry = self.open(channel, stream_id)
        if delta:
            self._grow((channel, stream_id), entry, delta)
        return entry

    def replace_or_emit(self, channel: ChannelKind, stream_id: str, full_text: str) -> str | None:
        """Handle a full restatement of a stream.

        An identical resend is ignored. Different text starts a new rendered
        entry: the feed segments output this way and concatenating would
        duplicate content. Returns the id of the new entry, if any.

        Whether a changed restatement should really open a new row or update
        the old one depends on the backend guaranteeing unique ids per
        emission; revisit once it does.
        """
        key = (channel, stream_id)
        entry = self._entries.get(key)
        if entry is not None and entry.buffer == full_text:
            logger.debug("Ignoring resend of %s stream %s", channel.value, stream_id)
            return None
        if entry is not None:
            self._settle(key, entry)
        entry_id = self._writer.append(_ROLES[channel], full_text, kind=channel.value)
        self._entries[key] = StreamEntry(
            target_entry_id=entry_id, buffer=full_text, streaming=False
        )
        return entry_id

    def finalize(
        self,
        channel: ChannelKind,
        stream_id: str,
        final_text: str | None = None,
    ) -> str | None:
        """Commit the stream's content and retire the stream id.

        Writes immediately. Without a live entry a non-empty *final_text*
        still produces one already-final entry.
        """
        key = (channel, stream_id)
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._scheduler.cancel(key)
            content = final_text or entry.buffer
            self._writer.update(entry.target_entry_id, content=content, is_streaming=False)
            return entry.target_entry_id
        if final_text:
            return self._writer.append(_ROLES[channel], final_text, kind=channel.value)
        return None

    def append_section_break(self, stream_id: str) -> None:
        """Separate reasoning paragraphs; ignored for unknown streams."""
        entry = self._entries.get((ChannelKind.REASONING, stream_id))
        if entry is None:
            return
        self._grow((ChannelKind.REASONING, stream_id), entry, SECTION_BREAK)

    def finalize_open(self, channels: tuple[ChannelKind, ...] = tuple(ChannelKind)) -> list[str]:
        """Finalize every open stream of *channels* in creation order."""
        finalized: list[str] = []
        for channel, stream_id in list(self._entries):
            if channel not in channels:
                continue
            entry = self._entries[(channel, stream_id)]
            if not entry.streaming:
                # Written in full by a restatement; later text flips it back.
                self._entries.pop((channel, stream_id))
                continue
            entry_id = self.finalize(channel, stream_id)
            if entry_id is not None:
                finalized.append(entry_id)
        return finalized

    def clear_all(self) -> None:
        """Forget every stream and cancel every pending flush without writing."""
        self._scheduler.cancel_all()
        self._entries.clear()

    # ------------------------------------------------------------------
    def request_flush(self, channel: ChannelKind, stream_id: str) -> None:
        key = (channel, stream_id)
        self._scheduler.schedule(key, lambda: self._flush(key))

    def _grow(self, key: StreamKey, entry: StreamEntry, text: str) -> None:
        if not entry.streaming:
            # Text after a restatement reopens the settled row.
            entry.streaming = True
            self._writer.update(entry.target_entry_id, is_streaming=True)
        entry.buffer += text
        self.request_flush(*key)

    def _flush(self, key: StreamKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        self._writer.update(entry.target_entry_id, content=entry.buffer)

    def _settle(self, key: StreamKey, entry: StreamEntry) -> None:
        """Write out a superseded streaming entry so it does not stay half-drawn."""
        self._scheduler.cancel(key)
        if entry.streaming:
            self._writer.update(
                entry.target_entry_id, content=entry.buffer, is_streaming=False
            )


__all__ = ["ChannelKind", "SECTION_BREAK", "StreamBufferManager", "StreamEntry"]
