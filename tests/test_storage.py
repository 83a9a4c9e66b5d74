"""Tests for storage module."""

import json
import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from timetamper.models import TrustedReference
from timetamper.storage import (
    REFERENCES_KEY,
    JsonFileBackend,
    MemoryBackend,
    TrustedReferenceStore,
)

from conftest import T0


def make_reference(created_at=T0, uptime: float = 3600.0, is_valid: bool = True) -> TrustedReference:
    return TrustedReference(
        timestamp=created_at,
        boot_time=T0 - timedelta(hours=2),
        device_uptime=uptime,
        created_at=created_at,
        is_valid=is_valid,
    )


class TestJsonFileBackend:
    """Tests for the file backend."""

    def test_missing_file_reads_none(self, tmp_path):
        """Test reading from a missing file."""
        backend = JsonFileBackend(tmp_path / "state.json")
        assert backend.get("anything") is None

    def test_set_creates_directories(self, tmp_path):
        """Test that writing creates the state directory."""
        path = tmp_path / "nested" / "state.json"
        backend = JsonFileBackend(path)

        backend.set("key", [1, 2, 3])

        assert json.loads(path.read_text()) == {"key": [1, 2, 3]}

    def test_keys_are_independent(self, tmp_path):
        """Test several keys share one file."""
        backend = JsonFileBackend(tmp_path / "state.json")
        backend.set("a", 1)
        backend.set("b", 2)
        backend.delete("a")

        assert backend.get("a") is None
        assert backend.get("b") == 2

    def test_corrupt_file_raises_on_read(self, tmp_path):
        """Test that corrupt content surfaces as ValueError from the backend."""
        path = tmp_path / "state.json"
        path.write_text("{not json")
        backend = JsonFileBackend(path)

        with pytest.raises(ValueError):
            backend.get("key")

    def test_corrupt_file_is_replaced_on_write(self, tmp_path):
        """Test that a write recovers from corrupt content."""
        path = tmp_path / "state.json"
        path.write_text("[1, 2")
        backend = JsonFileBackend(path)

        backend.set("key", "value")

        assert backend.get("key") == "value"

    def test_no_temp_files_left(self, tmp_path):
        """Test atomic replace leaves only the state file."""
        backend = JsonFileBackend(tmp_path / "state.json")
        backend.set("key", "value")

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


class TestTrustedReferenceStore:
    """Tests for TrustedReferenceStore."""

    def test_store_and_latest(self, store):
        """Test storing a reference makes it the latest."""
        ref = make_reference()
        store.store(ref)

        assert store.latest() == ref

    def test_newest_first(self, store, clock):
        """Test references are ordered newest first."""
        older = make_reference(created_at=T0 - timedelta(seconds=60))
        newer = make_reference(created_at=T0)
        store.store(older)
        store.store(newer)

        assert store.all() == [newer, older]
        assert store.latest() == newer

    def test_capacity_eviction(self, store):
        """Test storing 15 references keeps the 10 newest."""
        refs = [make_reference(created_at=T0 - timedelta(seconds=15 - i)) for i in range(15)]
        for ref in refs:
            store.store(ref)

        kept = store.all()
        assert len(kept) == 10
        assert kept == list(reversed(refs))[:10]

    def test_custom_capacity(self, backend, clock):
        """Test capacity is configurable."""
        store = TrustedReferenceStore(backend, capacity=3, clock=clock)
        for i in range(5):
            store.store(make_reference(created_at=T0 - timedelta(seconds=i)))

        assert len(store.all()) == 3

    def test_expired_references_excluded(self, store, clock):
        """Test references older than 24h never appear."""
        store.store(make_reference(created_at=T0))
        clock.advance(86401)

        assert store.latest() is None
        assert store.all() == []

    def test_expired_entry_dropped_on_store(self, store, backend, clock):
        """Test compaction on store removes expired entries from the persisted list."""
        store.store(make_reference(created_at=T0))
        clock.advance(86401)
        fresh = make_reference(created_at=clock.now)
        store.store(fresh)

        persisted = backend.get(REFERENCES_KEY)
        assert len(persisted) == 1
        assert store.all() == [fresh]

    def test_invalid_reference_not_kept(self, store, backend):
        """Test invalid references are dropped on store and never returned."""
        store.store(make_reference(is_valid=False))

        assert backend.get(REFERENCES_KEY) == []
        assert store.latest() is None

    def test_filter_applies_to_persisted_stale_data(self, backend, store):
        """Test stale and invalid entries written behind the store's back are filtered."""
        fresh = make_reference(created_at=T0 - timedelta(seconds=10))
        stale = make_reference(created_at=T0 - timedelta(days=2))
        invalid = make_reference(created_at=T0, is_valid=False)
        backend.set(REFERENCES_KEY, [invalid.to_dict(), stale.to_dict(), fresh.to_dict()])

        assert store.all() == [fresh]
        assert store.latest() == fresh

    def test_clear(self, store):
        """Test clear empties the store."""
        store.store(make_reference())
        store.clear()

        assert store.all() == []
        assert store.latest() is None

    def test_clear_is_idempotent(self, store):
        """Test clearing an empty store."""
        store.clear()
        store.clear()

        assert store.all() == []

    def test_malformed_data_reads_empty(self, backend, store):
        """Test undecodable persisted content is treated as empty."""
        backend.set(REFERENCES_KEY, [{"timestamp": "yesterday"}])

        assert store.all() == []
        assert store.latest() is None

    def test_malformed_data_replaced_on_store(self, backend, store):
        """Test storing over malformed content works."""
        backend.set(REFERENCES_KEY, "garbage")
        ref = make_reference()
        store.store(ref)

        assert store.all() == [ref]

    def test_backend_failures_are_swallowed(self, clock):
        """Test persistence errors never reach the caller."""
        backend = MagicMock()
        backend.get.side_effect = OSError("disk gone")
        backend.set.side_effect = OSError("disk gone")
        backend.delete.side_effect = OSError("disk gone")
        store = TrustedReferenceStore(backend, clock=clock)

        store.store(make_reference())
        assert store.latest() is None
        assert store.all() == []
        store.clear()

    def test_persists_across_instances(self, tmp_path, clock):
        """Test references survive a new store on the same file."""
        path = tmp_path / "state.json"
        ref = make_reference()
        TrustedReferenceStore(JsonFileBackend(path), clock=clock).store(ref)

        assert TrustedReferenceStore(JsonFileBackend(path), clock=clock).latest() == ref

    def test_concurrent_stores(self, tmp_path, clock):
        """Test concurrent writers leave a consistent list."""
        store = TrustedReferenceStore(JsonFileBackend(tmp_path / "state.json"), clock=clock)

        def writer(offset):
            for i in range(5):
                store.store(make_reference(created_at=T0 - timedelta(seconds=offset * 10 + i)))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store.all()) == 10

    def test_concurrent_mixed_operations(self, tmp_path, clock):
        """Test interleaved store, latest and clear keep the file decodable."""
        path = tmp_path / "state.json"
        store = TrustedReferenceStore(JsonFileBackend(path), clock=clock)

        def writer(offset):
            for i in range(10):
                store.store(make_reference(created_at=T0 - timedelta(seconds=offset * 10 + i)))

        def reader():
            for _ in range(20):
                store.latest()

        def clearer():
            for _ in range(5):
                store.clear()

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(3)]
        threads += [threading.Thread(target=reader) for _ in range(2)]
        threads.append(threading.Thread(target=clearer))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        data = json.loads(path.read_text()) if path.exists() else {}
        persisted = data.get(REFERENCES_KEY, [])
        assert len(persisted) <= store.capacity
        for entry in persisted:
            TrustedReference.from_dict(entry)
        assert len(store.all()) <= store.capacity


class TestMemoryBackend:
    """Tests for the in-memory backend."""

    def test_values_are_copied(self):
        """Test stored values are isolated from later mutation."""
        backend = MemoryBackend()
        value = [1, 2]
        backend.set("key", value)
        value.append(3)

        assert backend.get("key") == [1, 2]
