"""Tests for the append-only event log — proves integrity, ordering and fan-out."""

import json
import pytest
from datetime import datetime, timezone
from pathlib import Path

from warden.persistence.event_log import EventKind, EventLog, EventRecord

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestAppend:
    def test_emit_assigns_ids_and_hash(self) -> None:
        log = EventLog()
        event = log.emit(EventKind.TRUST_UPDATED, "u1", {"delta": -5}, timestamp_utc=T0)
        assert event.event_id.startswith("evt-")
        assert event.event_hash.startswith("sha256:")
        assert event.timestamp_utc == "2026-03-01T12:00:00.000000Z"
        assert log.count == 1
        assert log.last_event == event

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        record = EventRecord.create("e1", EventKind.WATCH_CREATED, "mod", {})
        log.append(record)
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(record)

    def test_hash_depends_on_payload(self) -> None:
        a = EventRecord.create("e1", EventKind.WATCH_CREATED, "mod", {"x": 1}, T0)
        b = EventRecord.create("e1", EventKind.WATCH_CREATED, "mod", {"x": 2}, T0)
        assert a.event_hash != b.event_hash


class TestQueries:
    def test_filters(self) -> None:
        log = EventLog()
        log.emit(EventKind.TRUST_UPDATED, "u1", {}, T0)
        log.emit(EventKind.TRUST_UPDATED, "u2", {}, T0)
        log.emit(EventKind.WATCH_TRIGGERED, "u1", {}, datetime(2026, 3, 2, tzinfo=timezone.utc))
        assert len(log.events()) == 3
        assert len(log.events(EventKind.TRUST_UPDATED)) == 2
        assert len(log.events_for("u1")) == 2
        assert len(log.events_for("u1", EventKind.WATCH_TRIGGERED)) == 1
        assert len(log.events_since("2026-03-02T00:00:00.000000Z")) == 1


class TestSubscribers:
    def test_fan_out_in_commit_order(self) -> None:
        log = EventLog()
        seen = []
        log.subscribe(lambda e: seen.append(e.payload["n"]))
        for n in range(5):
            log.emit(EventKind.TRUST_UPDATED, "u1", {"n": n})
        assert seen == [0, 1, 2, 3, 4]

    def test_kind_filter(self) -> None:
        log = EventLog()
        seen = []
        log.subscribe(seen.append, kind=EventKind.WATCH_TRIGGERED)
        log.emit(EventKind.TRUST_UPDATED, "u1", {})
        log.emit(EventKind.WATCH_TRIGGERED, "u1", {})
        assert [e.event_kind for e in seen] == [EventKind.WATCH_TRIGGERED]

    def test_failing_subscriber_is_isolated(self) -> None:
        log = EventLog()
        seen = []

        def broken(event):
            raise RuntimeError("dashboard offline")

        log.subscribe(broken)
        log.subscribe(seen.append)
        log.emit(EventKind.TRUST_UPDATED, "u1", {})
        assert len(seen) == 1
        assert log.count == 1

    def test_unsubscribe(self) -> None:
        log = EventLog()
        seen = []
        log.subscribe(seen.append)
        log.unsubscribe(seen.append)
        log.emit(EventKind.TRUST_UPDATED, "u1", {})
        assert seen == []


class TestFilePersistence:
    def test_reload_from_jsonl(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.emit(EventKind.TRUST_LOCKED, "u1", {"reason": "PERMANENT: scam"}, T0)
        log.emit(EventKind.WATCH_CREATED, "mod", {"watch_id": "w1"}, T0)

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events()[0].payload["reason"] == "PERMANENT: scam"
        assert reloaded.events()[1].event_kind == EventKind.WATCH_CREATED

    def test_tampered_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).emit(EventKind.TRUST_UPDATED, "u1", {"delta": -5}, T0)
        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["delta"] = 50
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Integrity"):
            EventLog(storage_path=path)

    def test_duplicate_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).emit(EventKind.TRUST_UPDATED, "u1", {}, T0)
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate"):
            EventLog(storage_path=path)
