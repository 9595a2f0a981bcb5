"""
Unit tests for backup export and import.
"""

import json
from datetime import UTC, datetime

import pytest

from cadence.delivery.backup import (
    BACKUP_VERSION,
    BackupFormatError,
    export_all_data,
    import_all_data,
    read_backup,
    write_backup,
)
from cadence.delivery.state_store import MemoryKeyValueStore, RecordStore
from cadence.delivery.streaks import StreakLedger
from cadence.study.pomodoro_engine import PomodoroEngine, RecordSessionRepository


@pytest.fixture
def populated(memory_store, scheduler, clock):
    scheduler.record_review("m1_warmup_1", 5)
    StreakLedger(memory_store, clock=clock).record_activity()
    memory_store.save("timer-sound", False)
    return memory_store


class TestExport:
    def test_nothing_to_export(self, memory_store):
        assert export_all_data(memory_store) is None

    def test_collects_records_with_meta(self, populated):
        exported_at = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
        data = export_all_data(populated, exported_at=exported_at)

        assert set(data) == {"course-srs", "course-streaks", "course-activity", "course-timer-sound", "_meta"}
        assert data["_meta"] == {
            "export_date": "2026-03-02T12:00:00+00:00",
            "version": BACKUP_VERSION,
            "keys": 4,
        }
        assert data["course-timer-sound"] is False

    def test_includes_timer_session(self, memory_store, clock):
        PomodoroEngine(RecordSessionRepository(memory_store), clock=clock).start_session("25-5-15")

        data = export_all_data(memory_store)

        assert data["course-session"]["phase"] == "prep"
        assert data["_meta"]["keys"] == 1

    def test_other_prefixes_not_exported(self, populated, backend):
        backend.set("other-course-srs", "{}")
        assert "other-course-srs" not in export_all_data(populated)


class TestImport:
    def test_restores_into_empty_profile(self, populated):
        data = export_all_data(populated)
        target = RecordStore(MemoryKeyValueStore())

        restored = import_all_data(target, data)

        assert restored == 4
        assert target.load("srs") == populated.load("srs")
        assert target.load("timer-sound") is False

    def test_overwrites_existing(self, populated, memory_store):
        data = export_all_data(populated)
        memory_store.save("srs", {})

        import_all_data(memory_store, data)

        assert "m1_warmup_1" in memory_store.load("srs")

    @pytest.mark.parametrize("data", [{}, {"course-srs": {}}, [], "backup"])
    def test_missing_meta_rejected(self, memory_store, data):
        with pytest.raises(BackupFormatError):
            import_all_data(memory_store, data)


class TestFiles:
    def test_write_then_read(self, populated, tmp_path):
        path = tmp_path / "backups" / "cadence.json"
        assert write_backup(populated, path) == 4

        target = RecordStore(MemoryKeyValueStore())
        assert read_backup(target, path) == 4
        assert json.loads(path.read_text(encoding="utf-8"))["_meta"]["keys"] == 4

    def test_empty_profile_writes_nothing(self, memory_store, tmp_path):
        path = tmp_path / "cadence.json"
        assert write_backup(memory_store, path) == 0
        assert not path.exists()

    def test_invalid_json(self, memory_store, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(BackupFormatError):
            read_backup(memory_store, path)

    def test_undecodable_file(self, memory_store, tmp_path):
        path = tmp_path / "binary.json"
        path.write_bytes(b"\xff\xfe\x00garbage")
        with pytest.raises(BackupFormatError):
            read_backup(memory_store, path)

    def test_unreadable_path(self, memory_store, tmp_path):
        with pytest.raises(BackupFormatError):
            read_backup(memory_store, tmp_path)
