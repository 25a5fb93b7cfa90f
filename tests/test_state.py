"""Tests for convergent.state."""

from __future__ import annotations

import json
import threading
import time

import pytest

from convergent.state import StateRecord, StateStore


def _record(address="appsync_api_cache.main", ident="api-1", **attrs):
    return StateRecord(address=address, kind="appsync_api_cache", id=ident, attributes=attrs)


class TestStateRecord:
    def test_frozen(self):
        record = _record()
        with pytest.raises(ValueError):
            record.id = "other"

    def test_updated_at_defaults(self):
        assert _record().updated_at is not None


class TestInMemoryStore:
    def test_put_get(self, store):
        record = _record(ttl=60)
        store.put(record)
        assert store.get(record.address) is record

    def test_get_missing(self, store):
        assert store.get("nope") is None

    def test_put_replaces_whole_record(self, store):
        store.put(_record(ttl=60))
        store.put(_record(ttl=120))
        assert store.get("appsync_api_cache.main").attributes == {"ttl": 120}

    def test_remove(self, store):
        store.put(_record())
        removed = store.remove("appsync_api_cache.main")
        assert removed is not None
        assert "appsync_api_cache.main" not in store

    def test_remove_missing(self, store):
        assert store.remove("nope") is None

    def test_find_by_identity(self, store):
        store.put(_record(address="appsync_api_cache.a", ident="x"))
        store.put(_record(address="appsync_api_cache.b", ident="y"))
        assert store.find("appsync_api_cache", "y").address == "appsync_api_cache.b"
        assert store.find("appsync_api_cache", "z") is None
        assert store.find("other_kind", "x") is None

    def test_addresses_sorted(self, store):
        store.put(_record(address="k.b"))
        store.put(_record(address="k.a"))
        assert store.addresses() == ["k.a", "k.b"]
        assert len(store) == 2

    def test_repr(self, store):
        assert "records=0" in repr(store)


class TestFileStore:
    def test_writes_json(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.put(_record(ttl=60))
        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert data["resources"][0]["id"] == "api-1"

    def test_reload(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(path).put(_record(ttl=60, type="LARGE"))
        reloaded = StateStore(path)
        record = reloaded.get("appsync_api_cache.main")
        assert record.attributes == {"ttl": 60, "type": "LARGE"}

    def test_remove_persists(self, tmp_path):
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.put(_record())
        store.remove("appsync_api_cache.main")
        assert len(StateStore(path)) == 0

    def test_no_temp_file_left(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(path).put(_record())
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_missing_file_is_empty(self, tmp_path):
        assert len(StateStore(tmp_path / "nope.json")) == 0

    def test_unsupported_version(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99, "resources": []}))
        with pytest.raises(ValueError, match="unsupported state version"):
            StateStore(path)


class TestLocking:
    def test_lock_serializes_same_address(self, store):
        active = []
        overlap = []

        def worker():
            with store.lock("k.a"):
                if active:
                    overlap.append(True)
                active.append(1)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlap == []

    def test_locks_are_per_address(self, store):
        with store.lock("k.a"):
            acquired = threading.Event()

            def other():
                with store.lock("k.b"):
                    acquired.set()

            t = threading.Thread(target=other)
            t.start()
            assert acquired.wait(1)
            t.join()

    def test_shared_identity_key_serializes(self, store):
        active = []
        overlap = []

        def worker(address):
            with store.lock(address, ("appsync_api_cache", "api-1")):
                if active:
                    overlap.append(address)
                active.append(address)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker, args=(f"k.{n}",)) for n in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlap == []

    def test_duplicate_keys_do_not_deadlock(self, store):
        with store.lock("k.a", "k.a"):
            pass

    def test_released_locks_are_pruned(self, store):
        store.put(_record(address="k.a"))
        with store.lock("k.a", ("appsync_api_cache", "api-1")):
            assert len(store._locks) == 2
            store.remove("k.a")
        assert store._locks == {}
