"""
Unit tests for the key-value backends and the namespaced record store.
"""

import pytest

from cadence.delivery.state_store import (
    MemoryKeyValueStore,
    RecordStore,
    SqliteKeyValueStore,
    StorageUnavailable,
    open_record_store,
)


class BrokenKeyValueStore(MemoryKeyValueStore):
    """Backend whose reads and/or writes always fail."""

    def __init__(self, fail_reads=True, fail_writes=True):
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def get(self, key):
        if self.fail_reads:
            raise StorageUnavailable("quota exceeded")
        return super().get(key)

    def set(self, key, value):
        if self.fail_writes:
            raise StorageUnavailable("quota exceeded")
        super().set(key, value)


class TestSqliteKeyValueStore:
    def test_roundtrip_and_overwrite(self, tmp_path):
        store = SqliteKeyValueStore(tmp_path / "state.db")
        store.set("course-srs", "{}")
        store.set("course-srs", '{"a": 1}')

        assert store.get("course-srs") == '{"a": 1}'
        assert store.keys() == ["course-srs"]
        store.close()

    def test_missing_key_and_remove(self, tmp_path):
        store = SqliteKeyValueStore(tmp_path / "state.db")
        assert store.get("course-streaks") is None

        store.set("course-streaks", "{}")
        store.remove("course-streaks")
        assert store.get("course-streaks") is None
        store.close()

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "state.db"
        first = SqliteKeyValueStore(path)
        first.set("course-activity", '{"2026-03-02": {"items_completed": 2}}')
        first.close()

        second = SqliteKeyValueStore(path)
        assert second.get("course-activity") == '{"2026-03-02": {"items_completed": 2}}'
        second.close()


class TestRecordStore:
    def test_key_namespacing(self):
        store = RecordStore(MemoryKeyValueStore(), prefix="go-course")
        assert store.key("srs") == "go-course-srs"

    def test_load_default_when_absent(self, memory_store):
        assert memory_store.load("streaks", {"current": 0}) == {"current": 0}

    def test_save_and_load(self, memory_store, backend):
        memory_store.save("srs", {"m1_warmup_1": {"ease_factor": 2.5}})
        assert memory_store.load("srs") == {"m1_warmup_1": {"ease_factor": 2.5}}
        assert backend.get("course-srs") == '{"m1_warmup_1": {"ease_factor": 2.5}}'

    def test_corrupt_value_returns_default(self, memory_store, backend):
        backend.set("course-srs", "{oops")
        assert memory_store.load("srs", {}) == {}

    def test_failed_write_is_kept_in_memory(self):
        store = RecordStore(BrokenKeyValueStore())
        store.save("streaks", {"current": 3})
        assert store.load("streaks") == {"current": 3}

    def test_failed_read_returns_default(self):
        store = RecordStore(BrokenKeyValueStore(fail_writes=False))
        assert store.load("srs", {}) == {}

    def test_fallback_cleared_once_backend_recovers(self):
        backend = BrokenKeyValueStore()
        store = RecordStore(backend)
        store.save("streaks", {"current": 1})

        backend.fail_reads = backend.fail_writes = False
        store.save("streaks", {"current": 2})

        assert backend.get("course-streaks") == '{"current": 2}'
        assert store.load("streaks") == {"current": 2}

    def test_delete(self, memory_store, backend):
        memory_store.save("session", {"status": "paused"})
        memory_store.delete("session")
        assert memory_store.load("session") is None
        assert backend.keys() == []

    def test_raw_access(self, memory_store):
        assert memory_store.save_raw("course-timer-sound", "false") is True
        assert memory_store.load_raw("course-timer-sound") == "false"
        assert memory_store.load("timer-sound") is False

    def test_save_raw_reports_failure(self):
        store = RecordStore(BrokenKeyValueStore())
        assert store.save_raw("course-srs", "{}") is False


class TestOpenRecordStore:
    def test_opens_sqlite(self, tmp_path):
        store = open_record_store(tmp_path / "state.db", prefix="rust-course")
        assert isinstance(store.backend, SqliteKeyValueStore)
        assert store.key("srs") == "rust-course-srs"

    def test_falls_back_to_memory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        store = open_record_store(blocker / "state.db")

        assert isinstance(store.backend, MemoryKeyValueStore)
        store.save("srs", {})
        assert store.load("srs") == {}


@pytest.mark.parametrize("prefix", ["course", "go-course"])
def test_prefixes_do_not_collide(prefix):
    backend = MemoryKeyValueStore()
    RecordStore(backend, prefix=prefix).save("srs", {"x": 1})
    assert RecordStore(backend, prefix="other").load("srs") is None
