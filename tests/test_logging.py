"""Tests for the JSONL event log."""

import json
from pathlib import Path

import pytest

from mneme.logging import (
    EventLog,
    LogEntry,
    configure_event_log,
    get_event_log,
    reset_event_log,
)


@pytest.fixture
def event_log(tmp_path: Path) -> EventLog:
    return EventLog(log_dir=tmp_path)


def read_entries(event_log: EventLog) -> list[dict]:
    with open(event_log.log_path) as f:
        return [json.loads(line) for line in f]


def test_log_entry_to_dict():
    """LogEntry excludes None values and empty extras."""
    entry = LogEntry(timestamp="2024-01-01T00:00:00Z", event="test")
    data = entry.to_dict()

    assert data == {"timestamp": "2024-01-01T00:00:00Z", "event": "test"}


def test_log_creates_file(event_log: EventLog):
    event_log.log("test_event")
    assert event_log.log_path.exists()


def test_log_writes_jsonl(event_log: EventLog):
    """Each event is one JSON line."""
    event_log.log("event1", user_id="u1")
    event_log.log("event2", user_id="u2", custom="value")

    entries = read_entries(event_log)
    assert len(entries) == 2
    assert entries[0]["event"] == "event1"
    assert entries[0]["user_id"] == "u1"
    assert entries[1]["extra"] == {"custom": "value"}


def test_log_extraction(event_log: EventLog):
    event_log.log_extraction("u1", 2, conversation_id="c1", types=["pet", "pet"])

    entry = read_entries(event_log)[0]
    assert entry["event"] == "extraction"
    assert entry["count"] == 2
    assert entry["conversation_id"] == "c1"
    assert entry["extra"]["types"] == ["pet", "pet"]


def test_log_assignment(event_log: EventLog):
    event_log.log_assignment("u1", "cat-1", category_name="Pets and Animals", confidence=0.9, fact_type="pet")

    entry = read_entries(event_log)[0]
    assert entry["event"] == "assignment"
    assert entry["category_id"] == "cat-1"
    assert entry["extra"]["category_name"] == "Pets and Animals"


def test_log_retrieval(event_log: EventLog):
    event_log.log_retrieval("u1", "keyword", 1, duration_ms=3.5)

    entry = read_entries(event_log)[0]
    assert entry["stage"] == "keyword"
    assert entry["count"] == 1
    assert entry["duration_ms"] == 3.5


def test_log_embedding_refresh(event_log: EventLog):
    event_log.log_embedding_refresh("u1", refreshed=2, skipped=1, failed=0)

    entry = read_entries(event_log)[0]
    assert entry["extra"] == {"refreshed": 2, "skipped": 1, "failed": 0}


def test_log_error(event_log: EventLog):
    event_log.log_error("disk full", user_id="u1", context="process_message")

    entry = read_entries(event_log)[0]
    assert entry["event"] == "error"
    assert entry["error"] == "disk full"
    assert entry["extra"]["context"] == "process_message"


def test_rotation(tmp_path: Path):
    """Files past the size limit are rotated."""
    event_log = EventLog(log_dir=tmp_path, max_size_mb=0.0001)
    for i in range(20):
        event_log.log("event", user_id=f"user-{i}")

    assert len(list(tmp_path.glob("memory_*.jsonl"))) >= 1
    assert event_log.log_path.exists()


def test_global_event_log(tmp_path: Path):
    reset_event_log()
    configured = configure_event_log(log_dir=tmp_path)
    assert get_event_log() is configured
    reset_event_log()
