"""Tests for session correlation on the shared feed."""

import pytest

from codexdesk.engine.correlator import (
    SessionCorrelator,
    derive_target_session_id,
    event_session_id,
)
from tests.event_utils import event

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("local_id", "expected"),
    [
        ("codex-event-abc", "abc"),
        ("abc", "abc"),
        ("codex-event-", None),
        ("", None),
        (None, None),
        (42, None),
    ],
)
def test_derive_target_session_id(local_id, expected):
    assert derive_target_session_id(local_id) == expected


def test_only_session_established_declares_a_session():
    assert event_session_id(event("session_configured", session_id="s")) == "s"
    assert event_session_id(event("agent_message", "m", message="x")) is None


def test_correlator_keeps_matching_and_agnostic_events():
    correlator = SessionCorrelator("codex-event-abc")
    assert correlator.target_session_id == "abc"
    assert correlator.should_keep(event("session_configured", session_id="abc"))
    assert correlator.should_keep(event("task_started"))
    assert not correlator.should_keep(event("session_configured", session_id="xyz"))


def test_correlator_without_target_keeps_everything():
    correlator = SessionCorrelator(None)
    assert correlator.target_session_id is None
    assert correlator.should_keep(event("session_configured", session_id="xyz"))
