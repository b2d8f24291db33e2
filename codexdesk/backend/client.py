"""Run the agent backend as a subprocess and stream its events."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import IO

from ..protocol import submissions
from ..protocol.events import Event, ProtocolDecodeError, decode_event
from ..protocol.submissions import Submission
from ..settings import BackendSettings
from ..telemetry import log_debug_payload, log_event
from ..util.strings import preview_text

logger = logging.getLogger(__name__)

CODEX_EXECUTABLE = "codex"
_READER_JOIN_TIMEOUT = 1.0


class BackendStartError(RuntimeError):
    """Raised when the backend process cannot be spawned."""


class BackendNotRunningError(RuntimeError):
    """Raised when a submission is sent to a backend that is not running."""


def discover_codex_command() -> str | None:
    """Return the backend executable found on ``PATH``."""
    return shutil.which(CODEX_EXECUTABLE)


def build_command(settings: BackendSettings, executable: str) -> list[str]:
    """Return the argv launching the backend in protocol mode.

    Every setting is passed as a ``-c key=value`` override; the API key is
    never put on the command line, see :func:`build_environment`.
    """
    command = [executable, "proto"]

    def override(key: str, value: str) -> None:
        command.extend(["-c", f"{key}={value}"])

    if settings.provider and settings.provider != "openai":
        provider = settings.resolve_provider()
        if provider is not None:
            override("model_provider", provider.name)
            if provider.base_url:
                override("base_url", provider.base_url)
        elif settings.use_oss:
            override("model_provider", "oss")
        else:
            override("model_provider", settings.provider)
    elif settings.use_oss:
        override("model_provider", "oss")

    if settings.model:
        override("model", settings.model)
    override("approval_policy", settings.approval_policy)
    override("sandbox_mode", settings.sandbox_mode)
    # Required for the backend to emit agent_message_delta events.
    override("show_raw_agent_reasoning", "true")
    if settings.working_directory:
        override("cwd", settings.working_directory)
    command.extend(settings.custom_args)
    return command


def build_environment(
    settings: BackendSettings,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the child environment exporting the API key under the provider's variable."""
    env = dict(os.environ if base is None else base)
    if settings.api_key:
        env[settings.api_key_env_var()] = settings.api_key
    return env


class CodexClient:
    """Own one backend subprocess.

    Stdout is read on a daemon thread; every decoded :class:`Event` is passed
    to ``deliver``, which is responsible for marshalling it onto the thread
    that owns the engine (``wx.CallAfter`` in the desktop app).
    """

    def __init__(
        self,
        session_id: str,
        settings: BackendSettings,
        *,
        deliver: Callable[[Event], None],
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self._session_id = session_id
        self._settings = settings
        self._deliver = deliver
        self._popen = popen
        self._process: subprocess.Popen | None = None
        self._stdin: IO[str] | None = None
        self._write_lock = threading.Lock()
        self._threads: list[threading.Thread] = []

    # ------------------------------------------------------------------
    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_active(self) -> bool:
        process = self._process
        return process is not None and self._stdin is not None and process.poll() is None

    # ------------------------------------------------------------------
    def start(self) -> None:
        """Spawn the backend and begin reading its events."""
        if self._process is not None:
            raise BackendStartError(f"backend for {self._session_id} already started")
        executable = self._settings.codex_path or discover_codex_command()
        if not executable:
            raise BackendStartError("Could not find codex executable")
        command = build_command(self._settings, executable)
        cwd = self._settings.working_directory or None
        log_event(
            "BACKEND_STARTING",
            {"session_id": self._session_id, "command": command, "cwd": cwd},
        )
        try:
            process = self._popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=build_environment(self._settings),
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            raise BackendStartError(f"failed to start {executable}: {exc}") from exc
        self._process = process
        self._stdin = process.stdin
        self._spawn_reader(self._read_stdout, process.stdout, "stdout")
        self._spawn_reader(self._read_stderr, process.stderr, "stderr")

    def send_user_input(self, text: str, images: Iterable[str | Path] = ()) -> None:
        images = tuple(images)
        logger.info(
            "User input with %d image(s): %s", len(images), preview_text(text)
        )
        self._send(submissions.user_input(text, images))

    def interrupt(self) -> None:
        self._send(submissions.interrupt())

    def send_exec_approval(self, approval_id: str, approved: bool) -> None:
        self._send(submissions.exec_approval(approval_id, approved))

    def send_patch_approval(self, approval_id: str, approved: bool) -> None:
        self._send(submissions.patch_approval(approval_id, approved))

    def close(self) -> None:
        """Ask the backend to shut down, then terminate it after the grace period."""
        process = self._process
        if process is None:
            return
        try:
            self._send(submissions.shutdown())
        except BackendNotRunningError as exc:
            logger.debug("Shutdown op not delivered: %s", exc)
        with self._write_lock:
            stdin, self._stdin = self._stdin, None
            if stdin is not None:
                try:
                    stdin.close()
                except OSError:
                    logger.debug("Backend stdin already closed")
        try:
            process.wait(timeout=self._settings.shutdown_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.debug("Backend still running, terminating")
            process.kill()
            process.wait()
        for thread in self._threads:
            thread.join(timeout=_READER_JOIN_TIMEOUT)
        self._threads.clear()
        self._process = None
        log_event(
            "BACKEND_CLOSED",
            {"session_id": self._session_id, "returncode": process.returncode},
        )

    # ------------------------------------------------------------------
    def _send(self, submission: Submission) -> None:
        payload = submission.to_json()
        with self._write_lock:
            stdin = self._stdin
            if stdin is None or self._process is None or self._process.poll() is not None:
                raise BackendNotRunningError(
                    f"backend for {self._session_id} is not running"
                )
            log_debug_payload("BACKEND_SUBMISSION", submission.to_dict())
            try:
                stdin.write(payload + "\n")
                stdin.flush()
            except (OSError, ValueError) as exc:
                raise BackendNotRunningError(str(exc)) from exc

    def _spawn_reader(
        self, target: Callable[[IO[str]], None], stream: IO[str] | None, name: str
    ) -> None:
        if stream is None:
            return
        thread = threading.Thread(
            target=target,
            args=(stream,),
            name=f"CodexClient-{name}-{self._session_id}",
            daemon=True,
        )
        self._threads.append(thread)
        thread.start()

    def _read_stdout(self, stream: IO[str]) -> None:
        start = time.monotonic()
        count = 0
        for line in stream:
            line = line.strip()
            if not line:
                continue
            try:
                event = decode_event(line)
            except ProtocolDecodeError as exc:
                logger.warning("Failed to parse backend event: %s", exc)
                log_debug_payload("BACKEND_UNPARSED_LINE", line)
                continue
            count += 1
            self._deliver(event)
        log_event(
            "BACKEND_STDOUT_CLOSED",
            {"session_id": self._session_id, "events": count},
            start_time=start,
        )

    def _read_stderr(self, stream: IO[str]) -> None:
        for line in stream:
            text = line.rstrip()
            if text:
                logger.debug("backend stderr: %s", text)


__all__ = [
    "BackendNotRunningError",
    "BackendStartError",
    "CodexClient",
    "build_command",
    "build_environment",
    "discover_codex_command",
]
