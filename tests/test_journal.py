"""
Tests for the Journal -- append-only JSON lines
"""

from shadowbox.core.journal import Event, EventType, Journal


class TestEvent:

    def test_id_is_deterministic(self):
        a = Event(type=EventType.INTENT, data={"note": "x", "b": 1}, timestamp="2026-01-01T00:00:00+00:00")
        b = Event(type=EventType.INTENT, data={"b": 1, "note": "x"}, timestamp="2026-01-01T00:00:00+00:00")
        assert a.id == b.id
        assert len(a.id) == 16

    def test_id_depends_on_content(self):
        ts = "2026-01-01T00:00:00+00:00"
        assert Event(EventType.RUN, {"runId": 1}, ts).id != Event(EventType.RUN, {"runId": 2}, ts).id

    def test_dict_round_trip(self):
        event = Event(type=EventType.APPLY, data={"target": "/src"}, agent="claude")
        restored = Event.from_dict(event.to_dict())
        assert restored == event
        assert event.to_dict()["type"] == "apply"


class TestJournal:

    def test_append_and_read_in_order(self, tmp_path):
        journal = Journal(tmp_path / "ai" / "changes.ndjson")
        first = journal.append(Event(EventType.RUN, {"runId": 1}))
        second = journal.append(Event(EventType.INTENT, {"note": "refactor"}))

        events = journal.read_all()
        assert [e.id for e in events] == [first.id, second.id]
        assert journal.count() == 2
        assert [e.data for e in journal.read_by_type(EventType.INTENT)] == [{"note": "refactor"}]

    def test_one_line_per_event(self, tmp_path):
        journal = Journal(tmp_path / "changes.ndjson")
        journal.append(Event(EventType.INTENT, {"note": "multi\nline"}))
        assert len(journal.path.read_bytes().splitlines()) == 1

    def test_append_preserves_prior_bytes(self, tmp_path):
        journal = Journal(tmp_path / "changes.ndjson")
        journal.append(Event(EventType.RUN, {"runId": 1}))
        before = journal.path.read_bytes()

        journal.append(Event(EventType.RUN, {"runId": 2}))

        assert journal.path.read_bytes().startswith(before)

    def test_malformed_lines_skipped(self, tmp_path):
        """A torn or foreign line never hides the events around it."""
        journal = Journal(tmp_path / "changes.ndjson")
        journal.append(Event(EventType.RUN, {"runId": 1}))
        with open(journal.path, "ab") as f:
            f.write(b'{"type": "run", "data": \n')
            f.write(b'{"type": "unknown", "data": {}}\n')
            f.write(b'[1, 2]\n')
        journal.append(Event(EventType.RUN, {"runId": 2}))

        assert [e.data["runId"] for e in journal.read_all()] == [1, 2]

    def test_missing_file_is_empty(self, tmp_path):
        assert Journal(tmp_path / "absent.ndjson").read_all() == []
