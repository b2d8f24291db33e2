"""Shared feed multiplexing backend events to every listening session."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import suppress

from ..protocol.events import Event

logger = logging.getLogger(__name__)

EventListener = Callable[[Event], None]


class EventFeed:
    """Deliver each published event, in publish order, to a snapshot of listeners.

    A failing listener is logged; the others still receive the event.
    """

    __slots__ = ("_listeners",)

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        with suppress(ValueError):
            self._listeners.remove(listener)

    def publish(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", event.tag)

    def __len__(self) -> int:
        return len(self._listeners)


__all__ = ["EventFeed", "EventListener"]
