"""End-to-end tests of one session reducing the backend feed."""

import pytest

from codexdesk.backend.feed import EventFeed
from codexdesk.engine.lifecycle import TurnState
from codexdesk.engine.session import EventSession, merge_token_counts
from codexdesk.protocol.events import TokenCount
from codexdesk.transcript import InMemoryTranscriptStore
from tests.event_utils import (
    ManualTickSource,
    event,
    exec_chunk,
    record_changes,
    updates,
    wire,
    wire_line,
)

pytestmark = pytest.mark.unit

LOCAL_ID = "codex-event-abc"


def make_session(store, ticks, approvals=None, local_id=LOCAL_ID):
    sink = approvals.append if approvals is not None else (lambda request: None)
    return EventSession(local_id, store=store, tick_source=ticks, on_approval_request=sink)


def test_idempotent_resend_of_agent_message(store, ticks):
    session = make_session(store, ticks)
    session.handle(event("agent_message", "m1", message="Hello"))
    session.handle(event("agent_message", "m1", message="Hello"))

    [entry] = store.entries(LOCAL_ID)
    assert entry.content == "Hello"
    assert entry.role == "agent"


def test_exec_lifecycle_yields_one_final_entry(store, ticks):
    session = make_session(store, ticks)
    session.handle(event("turn_started"))
    session.handle(
        event("exec_command_begin", "c1", call_id="c1", command=["ls", "-la"], cwd="/tmp")
    )
    assert store.is_loading(LOCAL_ID)
    session.handle(event("exec_command_output_delta", "c1", call_id="c1", chunk=exec_chunk("file1\n")))
    session.handle(event("exec_command_output_delta", "c1", call_id="c1", chunk=exec_chunk("file2\n")))
    session.handle(event("exec_command_end", "c1", call_id="c1", exit_code=0))

    [entry] = store.entries(LOCAL_ID)
    assert entry.content == "cwd: /tmp\n$ ls -la\nfile1\nfile2\n\nexit 0"
    assert not entry.is_streaming
    assert entry.role == "system"
    assert not store.is_loading(LOCAL_ID)
    assert ticks.pending == 0


def test_diff_shown_once_per_turn(store, ticks):
    session = make_session(store, ticks)
    session.handle(event("turn_started"))
    session.handle(event("turn_diff", unified_diff="D"))
    session.handle(event("turn_diff", unified_diff="D"))
    session.handle(event("turn_complete"))
    session.handle(event("turn_started"))
    session.handle(event("turn_diff", unified_diff="D"))

    diffs = [entry for entry in store.entries(LOCAL_ID) if entry.role == "system"]
    assert [entry.content for entry in diffs] == ["```diff\nD\n```"] * 2


def test_teardown_cancels_pending_flushes():
    store = InMemoryTranscriptStore()
    ticks = ManualTickSource(stop_on_cancel=False)
    session = make_session(store, ticks)
    session.handle(event("agent_message_delta", "m1", delta="late"))
    assert session.scheduler.pending_keys()
    changes = record_changes(store)

    session.teardown()
    ticks.tick()
    session.handle(event("agent_message_delta", "m1", delta="more"))
    ticks.tick()

    assert changes == []
    assert session.closed
    assert len(session.streams) == 0
    assert session.scheduler.pending_keys() == []


def test_foreign_session_established_is_dropped(store, ticks):
    session = make_session(store, ticks)
    session.handle(event("session_configured", session_id="other"))
    assert store.conversation(LOCAL_ID) is None

    session.handle(event("session_configured", session_id="abc"))
    assert store.conversation(LOCAL_ID) is not None


def test_session_agnostic_events_are_kept(store, ticks):
    session = make_session(store, ticks)
    session.handle(event("agent_message", "m1", message="kept"))
    assert [entry.content for entry in store.entries(LOCAL_ID)] == ["kept"]


def test_handle_raw_skips_undecodable_events(store, ticks):
    session = make_session(store, ticks)
    assert session.handle_raw("{broken") is None
    assert session.handle_raw(wire("no_such_event")) is None
    assert store.entries(LOCAL_ID) == []

    decoded = session.handle_raw(wire_line("agent_message", "m1", message="ok"))
    assert decoded is not None
    assert decoded.tag == "agent_final"
    assert store.entries(LOCAL_ID)[0].content == "ok"


def test_feed_delivers_to_every_attached_session(store, ticks):
    feed = EventFeed()
    first = make_session(store, ticks, local_id="codex-event-one")
    second = make_session(store, ticks, local_id="codex-event-two")
    first.attach(feed)
    first.attach(feed)
    second.attach(feed)
    assert len(feed) == 2

    feed.publish(event("agent_message", "m1", message="shared"))
    assert store.entries("codex-event-one")[0].content == "shared"
    assert store.entries("codex-event-two")[0].content == "shared"

    first.teardown()
    assert len(feed) == 1
    feed.publish(event("agent_message", "m2", message="only two"))
    assert len(store.entries("codex-event-one")) == 1
    assert len(store.entries("codex-event-two")) == 2


def test_attach_after_teardown_is_rejected(store, ticks):
    session = make_session(store, ticks)
    session.teardown()
    with pytest.raises(RuntimeError):
        session.attach(EventFeed())


def test_signals_report_turn_state_tokens_and_close(store, ticks):
    session = make_session(store, ticks)
    states: list[TurnState] = []
    tokens: list[TokenCount] = []
    closed: list[str] = []
    session.events.turn_state_changed.connect(states.append)
    session.events.tokens_changed.connect(tokens.append)
    session.events.closed.connect(closed.append)

    session.handle(event("task_started"))
    session.handle(event("token_count", input_tokens=10, output_tokens=2))
    session.handle(event("token_count", output_tokens=5, total_tokens=15))
    session.handle(event("task_complete"))
    session.teardown()
    session.teardown()

    assert states == [TurnState.ACTIVE, TurnState.IDLE]
    assert session.token_usage == TokenCount(input_tokens=10, output_tokens=5, total_tokens=15)
    assert len(tokens) == 2
    assert closed == [LOCAL_ID]


def test_merge_token_counts_keeps_unreported_fields():
    merged = merge_token_counts(
        TokenCount(input_tokens=1, cached_input_tokens=2), TokenCount(input_tokens=3)
    )
    assert merged == TokenCount(input_tokens=3, cached_input_tokens=2)
    assert merge_token_counts(None, TokenCount(total_tokens=4)) == TokenCount(total_tokens=4)


def test_streamed_turn_end_to_end(store, ticks):
    session = make_session(store, ticks)
    changes = record_changes(store)
    session.handle(event("task_started"))
    for delta in ("a", "b", "c"):
        session.handle(event("agent_message_delta", "m1", delta=delta))
    ticks.tick()
    session.handle(event("agent_message", "m1", message="abc"))
    session.handle(event("task_complete"))

    [entry] = store.entries(LOCAL_ID)
    assert entry.content == "abc"
    assert not entry.is_streaming
    assert len(updates(changes)) == 2
    assert session.turn_state is TurnState.IDLE


def test_deltas_after_full_message_survive_task_complete(store, ticks):
    session = make_session(store, ticks)
    session.handle(event("task_started"))
    session.handle(event("agent_message", "a1", message="Hello"))
    session.handle(event("agent_message_delta", "a1", delta=" world"))
    session.handle(event("task_complete"))
    ticks.tick()

    assert [entry.content for entry in store.entries(LOCAL_ID)] == ["Hello world"]
    assert store.entries(LOCAL_ID)[0].is_streaming is False
