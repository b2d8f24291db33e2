"""Command-line interface for CodexDesk."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .engine.approvals import ApprovalRequest
from .engine.scheduler import ImmediateTickSource
from .engine.session import EventSession
from .log import configure_logging
from .settings import AppSettings, load_app_settings
from .telemetry import sanitize
from .transcript import InMemoryTranscriptStore

DEFAULT_REPLAY_SESSION = "replay"


def replay_events(
    path: str | Path,
    *,
    session_id: str = DEFAULT_REPLAY_SESSION,
    settings: AppSettings | None = None,
) -> tuple[InMemoryTranscriptStore, list[ApprovalRequest]]:
    """Feed a recorded JSONL event log through a headless :class:`EventSession`."""
    settings = settings or AppSettings()
    store = InMemoryTranscriptStore()
    approvals: list[ApprovalRequest] = []
    session = EventSession(
        session_id,
        store=store,
        tick_source=ImmediateTickSource(),
        on_approval_request=approvals.append,
        flush_interval_ms=settings.stream.flush_interval_ms,
    )
    try:
        with open(path, "r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if line:
                    session.handle_raw(line)
    finally:
        session.teardown()
    return store, approvals


def cmd_replay(args: argparse.Namespace) -> int:
    """Replay an event log and print the resulting transcript."""
    try:
        store, approvals = replay_events(
            args.file, session_id=args.session, settings=args.app_settings
        )
    except OSError as exc:
        print(f"Cannot read event log: {exc}", file=sys.stderr)
        return 1
    entries = store.entries(args.session)
    if args.json:
        data = {
            "session_id": args.session,
            "entries": [entry.to_dict() for entry in entries],
            "approvals": [
                {"id": req.id, "kind": req.kind, "details": dict(req.details)}
                for req in approvals
            ],
        }
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return 0
    for entry in entries:
        print(f"[{entry.role}]")
        print(entry.content)
        print()
    for req in approvals:
        print(f"approval requested: {req.kind} {req.id}")
    return 0


def cmd_check_settings(args: argparse.Namespace) -> int:
    """Validate a settings file and print the effective values."""
    try:
        settings = load_app_settings(args.file)
    except (OSError, ValueError) as exc:
        print(f"Invalid settings: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(sanitize(settings.to_dict()), ensure_ascii=False, indent=2, sort_keys=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Construct argument parser for CLI commands."""
    parser = argparse.ArgumentParser(description="CodexDesk CLI")
    parser.add_argument("--settings", help="path to JSON/TOML settings")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="log debug output to the console"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_replay = sub.add_parser("replay", help="replay a recorded JSONL event log")
    p_replay.add_argument("file", help="file with one backend event per line")
    p_replay.add_argument(
        "--session",
        default=DEFAULT_REPLAY_SESSION,
        help="local session id; events of other sessions are dropped",
    )
    p_replay.add_argument("--json", action="store_true", help="print JSON output")
    p_replay.set_defaults(func=cmd_replay)

    p_check = sub.add_parser("check-settings", help="validate a settings file")
    p_check.add_argument("file", help="JSON or TOML settings file")
    p_check.set_defaults(func=cmd_check_settings)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)
    settings = AppSettings()
    if args.settings:
        try:
            settings = load_app_settings(args.settings)
        except (OSError, ValueError) as exc:
            print(f"Invalid settings: {exc}", file=sys.stderr)
            return 1
    args.app_settings = settings
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
