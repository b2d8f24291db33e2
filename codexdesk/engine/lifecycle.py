"""Turn lifecycle: the boundary of every piece of per-turn state."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from .dedup import DiffSeenSet
from .streams import StreamBufferManager
from .writer import TranscriptWriter

logger = logging.getLogger(__name__)

TURN_ABORTED_MESSAGE = "Turn aborted"


class TurnState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


class TurnLifecycle:
    """Two-state machine clearing streams and diffs on every transition.

    Streams and the diff set are emptied before the state flips, so nothing
    created in one turn is observable in the next.
    """

    def __init__(
        self,
        writer: TranscriptWriter,
        streams: StreamBufferManager,
        diffs: DiffSeenSet,
        *,
        on_state_changed: Callable[[TurnState], None] | None = None,
    ) -> None:
        self._writer = writer
        self._streams = streams
        self._diffs = diffs
        self._on_state_changed = on_state_changed
        self._state = TurnState.IDLE

    # ------------------------------------------------------------------
    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is TurnState.ACTIVE

    # ------------------------------------------------------------------
    def start(self) -> None:
        """Enter ``ACTIVE``; re-entrant starts repeat the clear."""
        self._writer.set_loading(True)
        self._clear()
        self._set_state(TurnState.ACTIVE)

    def complete(self) -> None:
        """Finish the turn, committing whatever is still streaming."""
        finalized = self._streams.finalize_open()
        if finalized:
            logger.debug("Finalized %d open stream(s) at turn end", len(finalized))
        self._writer.set_loading(False)
        self._clear()
        self._set_state(TurnState.IDLE)

    def abort(self) -> None:
        self._writer.system(TURN_ABORTED_MESSAGE, kind="turn-abort")
        self.complete()

    def reset(self) -> None:
        """Drop all per-turn state without touching the transcript."""
        self._clear()
        self._set_state(TurnState.IDLE)

    # ------------------------------------------------------------------
    def _clear(self) -> None:
        self._streams.clear_all()
        self._diffs.clear()

    def _set_state(self, state: TurnState) -> None:
        previous = self._state
        self._state = state
        if previous is not state:
            logger.debug("Turn state %s -> %s", previous.value, state.value)
            if self._on_state_changed is not None:
                self._on_state_changed(state)


__all__ = ["TURN_ABORTED_MESSAGE", "TurnLifecycle", "TurnState"]
