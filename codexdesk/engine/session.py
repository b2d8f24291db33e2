"""Bind the event engine to one chat session."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..protocol.events import Event, ProtocolDecodeError, TokenCount, decode_event
from ..telemetry import log_event
from ..transcript import TranscriptStore
from ..util.signals import Signal
from .approvals import ApprovalCallback, ApprovalSurface
from .correlator import SessionCorrelator
from .dedup import DiffSeenSet
from .dispatcher import EventDispatcher
from .lifecycle import TurnLifecycle, TurnState
from .scheduler import DEFAULT_INTERVAL_MS, FlushScheduler, TickSource
from .streams import StreamBufferManager
from .writer import TranscriptWriter

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..backend.feed import EventFeed

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EventSessionEvents:
    """Observable hooks for the session lifecycle."""

    turn_state_changed: Signal
    tokens_changed: Signal
    closed: Signal


def merge_token_counts(previous: TokenCount | None, update: TokenCount) -> TokenCount:
    """Overlay the fields *update* reports onto *previous*."""
    if previous is None:
        return update
    changes = {
        item.name: getattr(update, item.name)
        for item in fields(update)
        if getattr(update, item.name) is not None
    }
    return replace(previous, **changes)


class EventSession:
    """Own the per-session engine state and react to the shared feed.

    Construction wires the correlator, stream buffers, flush scheduler, turn
    lifecycle, diff dedup and approval surface around one dispatcher.
    :meth:`teardown` is synchronous: once it returns no buffer survives and
    no pending flush can write into the transcript.
    """

    def __init__(
        self,
        local_session_id: str,
        *,
        store: TranscriptStore,
        tick_source: TickSource,
        on_approval_request: ApprovalCallback,
        flush_interval_ms: int = DEFAULT_INTERVAL_MS,
    ) -> None:
        self._session_id = local_session_id
        self.events = EventSessionEvents(
            turn_state_changed=Signal(),
            tokens_changed=Signal(),
            closed=Signal(),
        )
        self.correlator = SessionCorrelator(local_session_id)
        self._writer = TranscriptWriter(store, local_session_id)
        self._scheduler = FlushScheduler(tick_source, interval_ms=flush_interval_ms)
        self.streams = StreamBufferManager(self._writer, self._scheduler)
        self.diffs = DiffSeenSet()
        self.lifecycle = TurnLifecycle(
            self._writer,
            self.streams,
            self.diffs,
            on_state_changed=self.events.turn_state_changed.emit,
        )
        self.approvals = ApprovalSurface(on_approval_request)
        self.dispatcher = EventDispatcher(
            writer=self._writer,
            streams=self.streams,
            lifecycle=self.lifecycle,
            diffs=self.diffs,
            approvals=self.approvals,
            on_token_count=self._on_token_count,
        )
        self._feed: EventFeed | None = None
        self._token_usage: TokenCount | None = None
        self._closed = False

    # ------------------------------------------------------------------
    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def scheduler(self) -> FlushScheduler:
        return self._scheduler

    @property
    def turn_state(self) -> TurnState:
        return self.lifecycle.state

    @property
    def token_usage(self) -> TokenCount | None:
        return self._token_usage

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    def attach(self, feed: EventFeed) -> None:
        """Subscribe to *feed*; a session listens to at most one feed."""
        if self._closed:
            raise RuntimeError(f"session {self._session_id} has been torn down")
        if self._feed is feed:
            return
        if self._feed is not None:
            self._feed.unsubscribe(self.handle)
        self._feed = feed
        feed.subscribe(self.handle)

    def handle(self, event: Event) -> None:
        """Correlate and dispatch one event from the feed."""
        if self._closed:
            return
        if not self.correlator.should_keep(event):
            logger.debug(
                "Dropping %s for foreign session (target %s)",
                event.tag,
                self.correlator.target_session_id,
            )
            return
        self.dispatcher.dispatch(event)

    def handle_raw(self, raw: Mapping[str, Any] | str | bytes) -> Event | None:
        """Decode and handle *raw*; malformed events are logged and skipped."""
        try:
            event = decode_event(raw)
        except ProtocolDecodeError as exc:
            logger.warning("Skipping undecodable event: %s", exc)
            return None
        self.handle(event)
        return event

    def teardown(self) -> None:
        """Unsubscribe and drop every buffer and pending flush."""
        if self._closed:
            return
        self._closed = True
        if self._feed is not None:
            self._feed.unsubscribe(self.handle)
            self._feed = None
        self.lifecycle.reset()
        self._scheduler.close()
        log_event("SESSION_TORN_DOWN", {"session_id": self._session_id})
        self.events.closed.emit(self._session_id)

    # ------------------------------------------------------------------
    def _on_token_count(self, update: TokenCount) -> None:
        self._token_usage = merge_token_counts(self._token_usage, update)
        self.events.tokens_changed.emit(self._token_usage)


__all__ = ["EventSession", "EventSessionEvents", "merge_token_counts"]
