"""Tests for the bounded history log."""

import json

import pytest

from aatm.core.history import HistoryLog
from aatm.core.models import HistoryEntry, PushOutcome


class TestHistoryLog:
    """Tests for appending and reading history entries."""

    def test_newest_first(self, history_log):
        """Entries come back in reverse insertion order."""
        history_log.append(sourcePath="/nas/a")
        history_log.append(sourcePath="/nas/b")

        entries = history_log.entries()
        assert [e["sourcePath"] for e in entries] == ["/nas/b", "/nas/a"]

    def test_bounded_length(self, tmp_path):
        """The oldest entries are dropped once the limit is reached."""
        log = HistoryLog(tmp_path / "history.json", limit=5)
        for i in range(8):
            log.append(sourcePath=f"/nas/{i}")

        entries = log.entries()
        assert len(entries) == 5
        assert entries[0]["sourcePath"] == "/nas/7"
        assert entries[-1]["sourcePath"] == "/nas/3"

    def test_default_limit_is_500(self, history_log):
        assert history_log.limit == 500

    def test_entries_limit(self, history_log):
        """A read limit returns only the newest entries."""
        for i in range(3):
            history_log.append(sourcePath=f"/nas/{i}")
        assert len(history_log.entries(2)) == 2

    def test_same_source_appends_new_entry(self, history_log):
        """Pushing the same source again records a second entry instead of updating the first."""
        history_log.append(sourcePath="/nas/movie", qbitPush="pending")
        history_log.append(sourcePath="/nas/movie", qbitPush="ok")

        entries = history_log.entries()
        assert len(entries) == 2
        assert entries[0]["qbitPush"] == "ok"
        assert entries[1]["qbitPush"] == "pending"
        assert entries[0]["id"] != entries[1]["id"]

    def test_serialized_fields(self, history_log):
        """Outcomes are stored as strings and an absent error is omitted."""
        entry = history_log.append(
            sourcePath="/nas/movie.mkv",
            torrentCreated=True,
            nfoCreated=True,
            lacaleUpload=PushOutcome.PENDING,
            qbitPush=PushOutcome.KO,
        )
        stored = history_log.entries()[0]

        assert stored["id"] == entry.id
        assert stored["ts"].endswith("Z")
        assert stored["lacaleUpload"] == "pending"
        assert stored["qbitPush"] == "ko"
        assert "error" not in stored

    def test_persisted_as_json_list(self, history_log, tmp_path):
        """The file holds a plain JSON array."""
        history_log.append(sourcePath="/nas/x")
        data = json.loads((tmp_path / "history.json").read_text())
        assert isinstance(data, list) and data[0]["sourcePath"] == "/nas/x"

    def test_corrupt_file_treated_as_empty(self, tmp_path):
        """A garbage file reads as empty and is replaced on the next append."""
        path = tmp_path / "history.json"
        path.write_text("garbage")
        log = HistoryLog(path)

        assert log.entries() == []
        log.append(sourcePath="/nas/y")
        assert len(log.entries()) == 1


class TestHistoryEntry:
    """Tests for the history entry model."""

    def test_string_outcomes_are_normalized(self):
        """Plain strings become PushOutcome members."""
        entry = HistoryEntry(qbitPush="ok", lacaleUpload="ko")
        assert entry.qbitPush is PushOutcome.OK
        assert entry.lacaleUpload is PushOutcome.KO

    def test_entries_are_immutable(self):
        entry = HistoryEntry()
        with pytest.raises(AttributeError):
            entry.sourcePath = "/changed"
