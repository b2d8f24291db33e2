"""Run engine callbacks on the wx event loop."""

from __future__ import annotations

from collections.abc import Callable

import wx

from ..backend.feed import EventFeed
from ..protocol.events import Event


class WxTickHandle:
    """Cancellable wrapper around :class:`wx.CallLater`."""

    __slots__ = ("_timer",)

    def __init__(self, timer: wx.CallLater) -> None:
        self._timer = timer

    def cancel(self) -> None:
        if self._timer.IsRunning():
            self._timer.Stop()


class WxTickSource:
    """Tick source backed by ``wx.CallLater``; must be used on the GUI thread."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> WxTickHandle:
        return WxTickHandle(wx.CallLater(max(1, int(delay_ms)), callback))


def wx_deliver(feed: EventFeed) -> Callable[[Event], None]:
    """Return a thread-safe callable publishing events on the GUI thread."""

    def deliver(event: Event) -> None:
        wx.CallAfter(feed.publish, event)

    return deliver


__all__ = ["WxTickHandle", "WxTickSource", "wx_deliver"]
