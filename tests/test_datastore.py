"""
Tests for the whole-file JSON datastore: initialization, legacy keys,
atomic writes and transactions.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Ensure src/ is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from datastore import COLLECTIONS, DatastoreError, JSONDatastore, empty_snapshot, generate_id


class TestInitialize:
    def test_creates_file_with_every_collection(self, store):
        store.initialize()
        data = json.loads(store.path.read_text())
        assert set(data) == set(COLLECTIONS)
        assert all(v == [] for v in data.values())

    def test_existing_file_is_left_alone(self, store):
        store.path.write_text(json.dumps({"users": [{"id": "u1", "email": "a@b.c"}]}))
        store.initialize()
        assert json.loads(store.path.read_text()) == {"users": [{"id": "u1", "email": "a@b.c"}]}

    def test_creates_missing_parent_directory(self, tmp_path):
        nested = JSONDatastore(tmp_path / "a" / "b" / "data.json")
        nested.initialize()
        assert nested.path.exists()


class TestLoad:
    def test_missing_collections_are_added(self, store):
        store.path.write_text(json.dumps({"users": []}))
        snapshot = store.load()
        assert set(COLLECTIONS) <= set(snapshot)

    def test_legacy_failure_modes_key_is_renamed(self, store):
        store.path.write_text(json.dumps({"failureModes": [{"id": "fm1"}]}))
        snapshot = store.load()
        assert snapshot["failure_modes"] == [{"id": "fm1"}]
        assert "failureModes" not in snapshot

    def test_corrupt_file_raises(self, store):
        store.path.write_text("{not json")
        with pytest.raises(DatastoreError):
            store.load()

    def test_non_object_document_raises(self, store):
        store.path.write_text("[]")
        with pytest.raises(DatastoreError, match="JSON object"):
            store.load()


class TestSave:
    def test_round_trip(self, store):
        snapshot = empty_snapshot()
        snapshot["users"].append({"id": "u1", "email": "a@b.c"})
        store.save(snapshot)
        assert store.load()["users"] == [{"id": "u1", "email": "a@b.c"}]

    def test_failed_replace_leaves_file_byte_identical(self, store):
        store.initialize()
        before = store.path.read_bytes()
        snapshot = empty_snapshot()
        snapshot["users"].append({"id": "u1"})

        with patch("datastore.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(DatastoreError, match="disk full"):
                store.save(snapshot)

        assert store.path.read_bytes() == before
        assert [p.name for p in store.path.parent.iterdir()] == [store.path.name]

    def test_unserializable_snapshot_raises(self, store):
        store.initialize()
        before = store.path.read_bytes()
        with pytest.raises(DatastoreError):
            store.save({"users": [{"id": object()}]})
        assert store.path.read_bytes() == before


class TestTransaction:
    def test_commits_on_success(self, store):
        with store.transaction() as db:
            db["users"].append({"id": "u1"})
        assert store.load()["users"] == [{"id": "u1"}]

    def test_nothing_written_when_block_raises(self, store):
        store.initialize()
        before = store.path.read_bytes()
        with pytest.raises(RuntimeError):
            with store.transaction() as db:
                db["users"].append({"id": "u1"})
                raise RuntimeError("boom")
        assert store.path.read_bytes() == before


def test_generate_id_is_unique():
    assert len({generate_id() for _ in range(100)}) == 100
