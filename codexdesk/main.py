"""Application entry point for CodexDesk."""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import uuid4

import wx

from .backend.client import BackendNotRunningError, BackendStartError, CodexClient
from .backend.feed import EventFeed
from .engine.approvals import ApprovalCallback, ApprovalRequest
from .engine.correlator import LOCAL_SESSION_PREFIX
from .engine.lifecycle import TurnState
from .engine.scheduler import TickSource
from .engine.session import EventSession
from .engine.writer import new_entry_id
from .log import configure_logging, install_exception_hooks, logger
from .settings import AppSettings, load_app_settings
from .transcript import InMemoryTranscriptStore, TranscriptChange, TranscriptEntry
from .ui.ticks import WxTickSource, wx_deliver

APP_NAME = "CodexDesk"


@dataclass(slots=True)
class DesktopSession:
    """Backend client and event session serving one conversation."""

    session: EventSession
    client: CodexClient
    feed: EventFeed
    store: InMemoryTranscriptStore
    closed: bool = field(default=False)

    @property
    def session_id(self) -> str:
        return self.session.session_id

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.session.teardown()
        self.client.close()


def new_session_id() -> str:
    return f"{LOCAL_SESSION_PREFIX}{uuid4().hex}"


def build_session(
    settings: AppSettings,
    *,
    on_approval_request: ApprovalCallback,
    store: InMemoryTranscriptStore | None = None,
    feed: EventFeed | None = None,
    session_id: str | None = None,
    deliver_factory: Callable[[EventFeed], Callable] = wx_deliver,
    tick_source: TickSource | None = None,
) -> DesktopSession:
    """Wire a backend client, the shared feed and an :class:`EventSession`.

    Events read by the client's background thread reach the engine through
    ``deliver_factory(feed)``, which by default marshals onto the GUI thread.
    The backend is not started; call ``client.start()`` when ready.
    """
    store = store if store is not None else InMemoryTranscriptStore()
    feed = feed if feed is not None else EventFeed()
    session_id = session_id or new_session_id()
    session = EventSession(
        session_id,
        store=store,
        tick_source=tick_source if tick_source is not None else WxTickSource(),
        on_approval_request=on_approval_request,
        flush_interval_ms=settings.stream.flush_interval_ms,
    )
    session.attach(feed)
    client = CodexClient(session_id, settings.backend, deliver=deliver_factory(feed))
    return DesktopSession(session=session, client=client, feed=feed, store=store)


class MainFrame(wx.Frame):
    """Plain transcript view with an input line."""

    def __init__(self, settings: AppSettings) -> None:
        super().__init__(
            None,
            title=APP_NAME,
            size=(settings.ui.window_width, settings.ui.window_height),
        )
        self._settings = settings
        panel = wx.Panel(self)
        self.transcript = wx.TextCtrl(
            panel, style=wx.TE_MULTILINE | wx.TE_READONLY | wx.TE_RICH2
        )
        self.input = wx.TextCtrl(panel, style=wx.TE_PROCESS_ENTER)
        self.send_button = wx.Button(panel, label="Send")
        self.stop_button = wx.Button(panel, label="Stop")
        self.status = self.CreateStatusBar()

        row = wx.BoxSizer(wx.HORIZONTAL)
        row.Add(self.input, 1, wx.EXPAND | wx.RIGHT, 4)
        row.Add(self.send_button, 0, wx.RIGHT, 4)
        row.Add(self.stop_button, 0)
        column = wx.BoxSizer(wx.VERTICAL)
        column.Add(self.transcript, 1, wx.EXPAND | wx.ALL, 4)
        column.Add(row, 0, wx.EXPAND | wx.ALL, 4)
        panel.SetSizer(column)

        self.desktop = build_session(settings, on_approval_request=self._on_approval)
        self.desktop.store.changed.connect(self._on_store_changed)
        self.desktop.session.events.turn_state_changed.connect(self._on_turn_state)

        self.input.Bind(wx.EVT_TEXT_ENTER, self._on_send)
        self.send_button.Bind(wx.EVT_BUTTON, self._on_send)
        self.stop_button.Bind(wx.EVT_BUTTON, self._on_stop)
        self.Bind(wx.EVT_CLOSE, self._on_close)

        try:
            self.desktop.client.start()
        except BackendStartError as exc:
            logger.error("Backend failed to start: %s", exc)
            self.status.SetStatusText(f"Backend unavailable: {exc}")

    # ------------------------------------------------------------------
    def _render(self) -> str:
        blocks = []
        for entry in self.desktop.store.entries(self.desktop.session_id):
            if (
                not self._settings.ui.show_reasoning
                and "-reasoning-" in entry.id
            ):
                continue
            marker = " …" if entry.is_streaming else ""
            blocks.append(f"[{entry.role}]{marker}\n{entry.content}")
        return "\n\n".join(blocks)

    def _on_store_changed(self, change: TranscriptChange) -> None:
        if change.session_id != self.desktop.session_id:
            return
        if change.kind == "loading":
            loading = self.desktop.store.is_loading(change.session_id)
            self.status.SetStatusText("Working…" if loading else "")
            return
        self.transcript.ChangeValue(self._render())
        self.transcript.ShowPosition(self.transcript.GetLastPosition())

    def _on_turn_state(self, state: TurnState) -> None:
        self.stop_button.Enable(state is TurnState.ACTIVE)

    def _on_approval(self, request: ApprovalRequest) -> None:
        # The dialog is modal; keep it out of the dispatch call stack.
        wx.CallAfter(self._ask_approval, request)

    def _ask_approval(self, request: ApprovalRequest) -> None:
        if request.kind == "exec":
            message = f"Run command?\n\n$ {request.command}\ncwd: {request.cwd}"
        else:
            files = "\n".join(request.files)
            message = f"Apply patch to:\n{files}"
        approved = (
            wx.MessageBox(message, APP_NAME, wx.YES_NO | wx.ICON_QUESTION, self)
            == wx.YES
        )
        try:
            if request.kind == "exec":
                self.desktop.client.send_exec_approval(request.id, approved)
            else:
                self.desktop.client.send_patch_approval(request.id, approved)
        except BackendNotRunningError as exc:
            logger.warning("Approval %s not delivered: %s", request.id, exc)

    def _on_send(self, _event: wx.CommandEvent) -> None:
        text = self.input.GetValue().strip()
        if not text:
            return
        session_id = self.desktop.session_id
        self.desktop.store.append_entry(
            session_id,
            TranscriptEntry(
                id=new_entry_id(session_id, "user"), role="user", content=text
            ),
        )
        self.input.Clear()
        try:
            self.desktop.client.send_user_input(text)
        except BackendNotRunningError as exc:
            logger.warning("User input not delivered: %s", exc)
            self.status.SetStatusText("Backend is not running")

    def _on_stop(self, _event: wx.CommandEvent) -> None:
        try:
            self.desktop.client.interrupt()
        except BackendNotRunningError as exc:
            logger.warning("Interrupt not delivered: %s", exc)

    def _on_close(self, event: wx.CloseEvent) -> None:
        self.desktop.close()
        event.Skip()


class CodexDeskApp(wx.App):
    """Custom wx.App that logs unhandled GUI exceptions."""

    def OnExceptionInMainLoop(self) -> None:  # pragma: no cover - GUI path
        exc_info = sys.exc_info()
        try:
            logger.exception("Unhandled exception in GUI main loop", exc_info=exc_info)
        finally:
            super().OnExceptionInMainLoop()


def main(argv: list[str] | None = None) -> None:
    """Run wx application with the main frame."""
    args = sys.argv[1:] if argv is None else argv
    settings = load_app_settings(args[0]) if args else AppSettings()
    configure_logging(settings.ui.log_level)
    install_exception_hooks()
    app = CodexDeskApp()
    frame = MainFrame(settings)
    frame.Show()
    app.MainLoop()


if __name__ == "__main__":  # pragma: no cover
    main()
