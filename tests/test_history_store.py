"""
History Store Unit Tests
========================
Covers:
    - File backend retention bound and newest-first reads
    - Single-writer ordering under concurrent records
    - Startup load: missing, corrupt and partially malformed files
    - Database backend on a temporary SQLite file
    - Fallback to the file backend on connection-level database errors
    - record() never raises
"""
import asyncio
import json
import os
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.db.database import DatabaseManager
from app.models.history_entry import HistoryEntry
from app.models.report import CanonicalReport
from app.services.history_store import FileHistoryBackend, HistoryStore


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _entry(i: int, language: str = "python") -> HistoryEntry:
    report = CanonicalReport(analysis=f"analysis {i}", corrected_code=f"fixed {i}")
    return HistoryEntry(
        original_code=f"code {i}",
        language=language,
        fixed_code=f"fixed {i}",
        explanation=f"explanation {i}",
        report=report,
        model="gemini-1.5-flash",
    )


def _read_file(path) -> list:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# 1. File backend
# ---------------------------------------------------------------------------
class TestFileBackend:

    def test_retention_keeps_newest_fifty(self, tmp_path):
        path = tmp_path / "history.json"
        backend = FileHistoryBackend(str(path), max_items=50)

        async def scenario():
            for i in range(55):
                await backend.record(_entry(i))
            await backend.close()

        _run(scenario())

        stored = _read_file(path)
        assert len(stored) == 50
        assert stored[0]["originalCode"] == "code 5"
        assert stored[-1]["originalCode"] == "code 54"
        assert len(backend) == 50

    def test_recent_is_newest_first(self, tmp_path):
        backend = FileHistoryBackend(str(tmp_path / "history.json"))

        async def scenario():
            for i in range(3):
                await backend.record(_entry(i))
            await backend.close()

        _run(scenario())

        assert [e.original_code for e in backend.recent(10)] == ["code 2", "code 1", "code 0"]
        assert [e.original_code for e in backend.recent(2)] == ["code 2", "code 1"]
        assert backend.recent(0) == []

    def test_concurrent_records_all_persist(self, tmp_path):
        path = tmp_path / "history.json"
        backend = FileHistoryBackend(str(path))

        async def scenario():
            await asyncio.gather(*(backend.record(_entry(i)) for i in range(10)))
            await backend.close()

        _run(scenario())

        stored = _read_file(path)
        assert len(stored) == 10
        assert sorted(item["originalCode"] for item in stored) == sorted(f"code {i}" for i in range(10))

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "history.json"
        backend = FileHistoryBackend(str(path))

        async def scenario():
            await backend.record(_entry(1))
            await backend.close()

        _run(scenario())
        assert path.exists()
        assert not [p for p in os.listdir(path.parent) if p.startswith(".history-")]

    def test_entry_round_trips_through_file(self, tmp_path):
        path = tmp_path / "history.json"
        writer = FileHistoryBackend(str(path))

        async def scenario():
            await writer.record(_entry(7, language="cpp"))
            await writer.close()

        _run(scenario())

        reader = FileHistoryBackend(str(path))
        assert reader.load() == 1
        entry = reader.recent(1)[0]
        assert entry.language == "cpp"
        assert entry.report.corrected_code == "fixed 7"


class TestFileLoad:

    def test_missing_file_starts_empty(self, tmp_path):
        backend = FileHistoryBackend(str(tmp_path / "absent.json"))
        assert backend.load() == 0
        assert backend.recent(10) == []

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("{not json", encoding="utf-8")
        backend = FileHistoryBackend(str(path))
        assert backend.load() == 0

    def test_non_list_file_starts_empty(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text('{"entries": []}', encoding="utf-8")
        assert FileHistoryBackend(str(path)).load() == 0

    def test_malformed_entries_are_skipped(self, tmp_path):
        path = tmp_path / "history.json"
        good = _entry(1).to_wire()
        path.write_text(json.dumps([good, {"language": "python"}, "junk"]), encoding="utf-8")
        backend = FileHistoryBackend(str(path))
        assert backend.load() == 1


# ---------------------------------------------------------------------------
# 2. Store with database
# ---------------------------------------------------------------------------
def _sqlite_db(tmp_path) -> DatabaseManager:
    db = DatabaseManager(f"sqlite:///{tmp_path / 'history.db'}")
    assert db.connect() is True
    return db


class TestDatabaseBackend:

    def test_records_go_to_database(self, tmp_path):
        db = _sqlite_db(tmp_path)
        file_backend = FileHistoryBackend(str(tmp_path / "history.json"))
        store = HistoryStore(file_backend, db=db)

        async def scenario():
            for i in range(3):
                await store.record(_entry(i))
            recent = await store.recent(2)
            await store.close()
            return recent

        recent = _run(scenario())

        assert store.backend_name == "file"  # disposed on close
        assert [e.original_code for e in recent] == ["code 2", "code 1"]
        assert len(file_backend) == 0
        assert not (tmp_path / "history.json").exists()

    def test_disabled_database_uses_file(self, tmp_path):
        db = DatabaseManager(f"sqlite:///{tmp_path / 'history.db'}", disabled=True)
        assert db.connect() is False
        store = HistoryStore(FileHistoryBackend(str(tmp_path / "history.json")), db=db)
        assert store.backend_name == "file"

    def test_connection_error_falls_back_to_file(self, tmp_path):
        db = _sqlite_db(tmp_path)
        file_backend = FileHistoryBackend(str(tmp_path / "history.json"))
        store = HistoryStore(file_backend, db=db)
        lost = OperationalError("INSERT", {}, Exception("connection lost"))

        async def scenario():
            with patch.object(store.db_backend, "insert", side_effect=lost):
                await store.record(_entry(1))
            await store.record(_entry(2))
            recent = await store.recent()
            await store.close()
            return recent

        recent = _run(scenario())

        assert db.is_ready() is False
        assert [e.original_code for e in recent] == ["code 2", "code 1"]
        assert len(_read_file(tmp_path / "history.json")) == 2

    def test_read_connection_error_falls_back_to_file(self, tmp_path):
        db = _sqlite_db(tmp_path)
        file_backend = FileHistoryBackend(str(tmp_path / "history.json"))
        file_backend._cache.append(_entry(9))
        store = HistoryStore(file_backend, db=db)
        lost = OperationalError("SELECT", {}, Exception("connection lost"))

        with patch.object(store.db_backend, "recent", side_effect=lost):
            recent = _run(store.recent(5))

        assert [e.original_code for e in recent] == ["code 9"]
        db.dispose()


class TestRecordNeverRaises:

    def test_file_write_failure_is_swallowed(self, tmp_path):
        backend = FileHistoryBackend(str(tmp_path / "history.json"))
        store = HistoryStore(backend)

        async def scenario():
            with patch.object(FileHistoryBackend, "_write_file", side_effect=OSError("disk full")):
                await store.record(_entry(1))
            await store.close()

        _run(scenario())
        assert len(backend) == 1

    def test_database_insert_failure_is_swallowed(self, tmp_path):
        db = _sqlite_db(tmp_path)
        store = HistoryStore(FileHistoryBackend(str(tmp_path / "history.json")), db=db)

        async def scenario():
            with patch.object(store.db_backend, "insert", side_effect=ValueError("bad row")):
                await store.record(_entry(1))
            await store.close()

        _run(scenario())
        # Not a connection error: the database stays the selected backend
        assert not (tmp_path / "history.json").exists()


class TestAtomicWrite:

    def test_descriptor_closed_when_fdopen_fails(self, tmp_path):
        backend = FileHistoryBackend(str(tmp_path / "history.json"))

        with patch("app.services.history_store.os.fdopen", side_effect=OSError("no memory")), \
             patch("app.services.history_store.os.close", wraps=os.close) as close:
            with pytest.raises(OSError):
                backend._write_file([])

        assert close.call_count == 1
        assert os.listdir(tmp_path) == []

    def test_failed_dump_leaves_previous_file(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("[]", encoding="utf-8")
        backend = FileHistoryBackend(str(path))

        with pytest.raises(TypeError):
            backend._write_file([{"bad": object()}])

        assert path.read_text(encoding="utf-8") == "[]"
        assert os.listdir(tmp_path) == ["history.json"]
