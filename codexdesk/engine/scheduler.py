"""Coalesce rapid buffer mutations into at most one write per refresh tick."""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 16


class TickHandle(Protocol):
    def cancel(self) -> None:
        """Stop the timer; the callback must not run afterwards."""


class TickSource(Protocol):
    """Something able to run a callback on a later UI refresh tick."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TickHandle:
        """Schedule *callback* after *delay_ms* and return a cancellable handle."""


class _NoopHandle:
    __slots__ = ()

    def cancel(self) -> None:
        return None


class ImmediateTickSource:
    """Run callbacks synchronously; for headless replays without an event loop."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TickHandle:
        callback()
        return _NoopHandle()


@dataclass(slots=True, eq=False)
class PendingFlush:
    """Outstanding timer for one key."""

    key: Hashable
    handle: TickHandle | None = None


class FlushScheduler:
    """Keep at most one pending callback per key.

    A callback fires once, on the next tick after it was scheduled, and only
    if its :class:`PendingFlush` is still the one registered for the key. A
    timer that fires after :meth:`cancel`, :meth:`cancel_all` or
    :meth:`close` therefore never reaches its callback, even when the tick
    source could not stop it in time.
    """

    def __init__(
        self,
        tick_source: TickSource,
        *,
        interval_ms: int = DEFAULT_INTERVAL_MS,
    ) -> None:
        self._ticks = tick_source
        self._interval_ms = interval_ms
        self._pending: dict[Hashable, PendingFlush] = {}
        self._closed = False

    # ------------------------------------------------------------------
    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def closed(self) -> bool:
        return self._closed

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def pending_keys(self) -> list[Hashable]:
        return list(self._pending)

    # ------------------------------------------------------------------
    def schedule(self, key: Hashable, callback: Callable[[], None]) -> bool:
        """Schedule *callback* for *key* unless one is already pending.

        Returns ``True`` when a new timer was started.
        """
        if self._closed:
            logger.debug("Refusing flush for %r: scheduler closed", key)
            return False
        if key in self._pending:
            return False
        pending = PendingFlush(key=key)
        self._pending[key] = pending
        handle = self._ticks.call_later(
            self._interval_ms, lambda: self._fire(pending, callback)
        )
        if self._pending.get(key) is pending:
            pending.handle = handle
        return True

    def cancel(self, key: Hashable) -> bool:
        """Drop the pending flush of *key* without running it."""
        pending = self._pending.pop(key, None)
        if pending is None:
            return False
        if pending.handle is not None:
            pending.handle.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._pending):
            self.cancel(key)

    def close(self) -> None:
        """Cancel everything and refuse further scheduling."""
        self.cancel_all()
        self._closed = True

    # ------------------------------------------------------------------
    def _fire(self, pending: PendingFlush, callback: Callable[[], None]) -> None:
        if self._closed or self._pending.get(pending.key) is not pending:
            return
        del self._pending[pending.key]
        callback()


__all__ = [
    "DEFAULT_INTERVAL_MS",
    "FlushScheduler",
    "ImmediateTickSource",
    "PendingFlush",
    "TickHandle",
    "TickSource",
]
