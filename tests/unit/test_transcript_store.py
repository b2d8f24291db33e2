"""Tests for the in-memory transcript store."""

import logging

import pytest

from codexdesk.transcript import InMemoryTranscriptStore, TranscriptEntry
from tests.event_utils import record_changes

pytestmark = pytest.mark.unit


def test_append_creates_conversation_and_announces():
    store = InMemoryTranscriptStore()
    changes = record_changes(store)
    store.append_entry("s", TranscriptEntry(id="e1", role="agent", content="hi"))

    assert store.session_ids() == ["s"]
    assert [change.kind for change in changes] == ["created", "appended"]
    assert store.entries("s")[0].content == "hi"


def test_update_is_last_write_wins():
    store = InMemoryTranscriptStore()
    store.append_entry("s", TranscriptEntry(id="e1", role="agent", content="a", is_streaming=True))
    store.update_entry("s", "e1", content="ab")
    store.update_entry("s", "e1", content="abc", is_streaming=False)

    [entry] = store.entries("s")
    assert entry.content == "abc"
    assert not entry.is_streaming


def test_update_of_unknown_entry_is_ignored(caplog):
    store = InMemoryTranscriptStore()
    with caplog.at_level(logging.WARNING, logger="codexdesk"):
        store.update_entry("missing", "e1", content="x")
    assert "unknown entry" in caplog.text
    assert store.entries("missing") == []


def test_update_rejects_unknown_fields():
    store = InMemoryTranscriptStore()
    store.append_entry("s", TranscriptEntry(id="e1", role="agent", content="a"))
    with pytest.raises(TypeError):
        store.update_entry("s", "e1", id="other")


def test_loading_changes_are_emitted_once():
    store = InMemoryTranscriptStore()
    changes = record_changes(store)
    store.set_loading("s", True)
    store.set_loading("s", True)
    store.set_loading("s", False)

    assert [change.kind for change in changes] == ["created", "loading", "loading"]
    assert not store.is_loading("s")


def test_entries_are_copied_on_append():
    store = InMemoryTranscriptStore()
    entry = TranscriptEntry(id="e1", role="user", content="original")
    store.append_entry("s", entry)
    entry.content = "mutated"
    assert store.entries("s")[0].content == "original"
    assert store.entries("s")[0].to_dict()["role"] == "user"
