"""Unit tests for portops_sync.batch_writer and the in-memory store contract."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from portops_sync.batch_writer import WriteCheckpoint, chunked, write_batches
from portops_sync.shared import BatchCommitError, DocumentNotFoundError
from portops_sync.store import OP_CREATE, OP_UPDATE, MemoryDocumentStore, WriteOp


def _create(trip_id: str, **data) -> WriteOp:
    return WriteOp(kind=OP_CREATE, trip_id=trip_id, data=data or {"shipName": trip_id})


def _update(trip_id: str, **data) -> WriteOp:
    return WriteOp(kind=OP_UPDATE, trip_id=trip_id, data=data or {"isConfirmed": True})


class FailingStore(MemoryDocumentStore):
    """Rejects any chunk that touches a trip id in ``poison``."""

    def __init__(self, poison: set[str], **kwargs) -> None:
        super().__init__(**kwargs)
        self.poison = poison

    def commit_chunk(self, collection, ops):
        if any(op.trip_id in self.poison for op in ops):
            raise RuntimeError("write rejected")
        super().commit_chunk(collection, ops)


# ---------------------------------------------------------------------------
# chunked
# ---------------------------------------------------------------------------

class TestChunked:
    def test_splits_in_order(self):
        ops = [_create(f"t{i}") for i in range(5)]
        chunks = chunked(ops, 2)
        assert [[op.trip_id for op in chunk] for chunk in chunks] == [
            ["t0", "t1"], ["t2", "t3"], ["t4"],
        ]

    def test_exactly_max_is_one_chunk(self):
        assert len(chunked([_create(f"t{i}") for i in range(500)], 500)) == 1

    def test_max_plus_one_is_two_chunks(self):
        chunks = chunked([_create(f"t{i}") for i in range(501)], 500)
        assert [len(c) for c in chunks] == [500, 1]

    def test_empty(self):
        assert chunked([], 500) == []

    @pytest.mark.parametrize("size", [0, -1, 501])
    def test_rejects_out_of_range_size(self, size):
        with pytest.raises(ValueError):
            chunked([_create("t1")], size)


# ---------------------------------------------------------------------------
# MemoryDocumentStore
# ---------------------------------------------------------------------------

class TestMemoryStore:
    def test_update_merges_fields(self):
        store = MemoryDocumentStore(collections={"trip": {"t1": {"visitId": "V1"}}})
        store.commit_chunk("trip", [_update("t1", isConfirmed=True)])
        assert store.collections["trip"]["t1"] == {"visitId": "V1", "isConfirmed": True}

    def test_update_missing_document_rolls_back_whole_chunk(self):
        store = MemoryDocumentStore(collections={"trip": {}})
        with pytest.raises(DocumentNotFoundError):
            store.commit_chunk("trip", [_create("t1"), _update("missing")])
        assert store.collections["trip"] == {}
        assert store.commits == 0

    def test_create_is_idempotent_by_id(self):
        store = MemoryDocumentStore()
        store.commit_chunk("trip", [_create("t1", shipName="A")])
        store.commit_chunk("trip", [_create("t1", shipName="B")])
        assert store.collections["trip"] == {"t1": {"shipName": "A"}}

    def test_fetch_returns_copies(self):
        store = MemoryDocumentStore(collections={"trip": {"t1": {"shipName": "A"}}})
        [(doc_id, doc)] = store.fetch_all("trip")
        doc["shipName"] = "changed"
        assert store.collections["trip"]["t1"]["shipName"] == "A"

    def test_fetch_missing_collection_is_empty(self):
        assert MemoryDocumentStore().fetch_all("charge") == []


# ---------------------------------------------------------------------------
# write_batches
# ---------------------------------------------------------------------------

class TestWriteBatches:
    def test_commits_every_chunk(self):
        store = MemoryDocumentStore()
        progress = write_batches(store, "trip", [_create(f"t{i}") for i in range(3)], batch_size=2)
        assert progress.chunks_total == 2
        assert progress.chunks_committed == 2
        assert progress.ops_committed == 3
        assert store.commits == 2

    def test_failure_stops_later_chunks(self):
        store = FailingStore(poison={"t2"})
        ops = [_create(f"t{i}") for i in range(5)]
        with pytest.raises(BatchCommitError) as excinfo:
            write_batches(store, "trip", ops, batch_size=2)
        err = excinfo.value
        assert err.chunk_index == 1
        assert err.ops_committed == 2
        assert isinstance(err.cause, RuntimeError)
        assert sorted(store.collections["trip"]) == ["t0", "t1"]

    def test_checkpoint_tracks_committed_chunks(self, tmp_path):
        store = FailingStore(poison={"t2"})
        ops = [_create(f"t{i}") for i in range(5)]
        checkpoint = WriteCheckpoint(tmp_path / "ckpt.json")
        checkpoint.start("r1", ops, 2)

        with pytest.raises(BatchCommitError):
            write_batches(store, "trip", ops, batch_size=2, checkpoint=checkpoint)

        saved = json.loads((tmp_path / "ckpt.json").read_text(encoding="utf-8"))
        assert saved["run_id"] == "r1"
        assert saved["chunks_committed"] == 1
        assert len(saved["ops"]) == 5

    def test_resume_skips_committed_chunks(self, tmp_path):
        store = FailingStore(poison={"t2"})
        ops = [_create(f"t{i}") for i in range(5)]
        checkpoint = WriteCheckpoint(tmp_path / "ckpt.json")
        checkpoint.start("r1", ops, 2)
        with pytest.raises(BatchCommitError):
            write_batches(store, "trip", ops, batch_size=2, checkpoint=checkpoint)

        store.poison = set()
        resumed = WriteCheckpoint(tmp_path / "ckpt.json")
        assert resumed.load()
        progress = write_batches(
            store,
            "trip",
            resumed.ops,
            batch_size=resumed.batch_size,
            checkpoint=resumed,
            start_chunk=resumed.chunks_committed,
        )
        assert progress.chunks_skipped == 1
        assert progress.chunks_committed == 2
        assert progress.ops_committed == 5
        assert sorted(store.collections["trip"]) == [f"t{i}" for i in range(5)]
        assert not (tmp_path / "ckpt.json").exists()

    def test_replaying_committed_chunk_is_harmless(self):
        store = MemoryDocumentStore()
        ops = [_create("t1", shipName="A"), _update("t1", gt=100)]
        write_batches(store, "trip", ops)
        write_batches(store, "trip", ops)
        assert store.collections["trip"] == {"t1": {"shipName": "A", "gt": 100}}

    def test_no_ops_clears_checkpoint(self, tmp_path):
        checkpoint = WriteCheckpoint(tmp_path / "ckpt.json")
        checkpoint.start("r1", [], 500)
        progress = write_batches(MemoryDocumentStore(), "trip", [], checkpoint=checkpoint)
        assert progress.chunks_total == 0
        assert not checkpoint.path.exists()


# ---------------------------------------------------------------------------
# WriteCheckpoint
# ---------------------------------------------------------------------------

class TestWriteCheckpoint:
    def test_load_missing_file(self, tmp_path):
        assert not WriteCheckpoint(tmp_path / "none.json").load()

    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "ckpt.json"
        ops = [_create("t1"), _update("t2")]
        WriteCheckpoint(path).start("r1", ops, 50)

        loaded = WriteCheckpoint(path)
        assert loaded.load()
        assert loaded.run_id == "r1"
        assert loaded.batch_size == 50
        assert loaded.ops == ops
        assert loaded.chunks_committed == 0

    def test_corrupt_file_starts_fresh(self, tmp_path):
        path = tmp_path / "ckpt.json"
        path.write_text("{not json", encoding="utf-8")
        checkpoint = WriteCheckpoint(path)
        assert not checkpoint.load()
        assert checkpoint.ops == []

    def test_unknown_op_kind_is_rejected(self, tmp_path):
        path = tmp_path / "ckpt.json"
        path.write_text(
            json.dumps({"ops": [{"kind": "delete", "trip_id": "t1", "data": {}}]}),
            encoding="utf-8",
        )
        assert not WriteCheckpoint(path).load()

    def test_non_json_op_data_is_rejected(self, tmp_path):
        boarding = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
        with pytest.raises(TypeError):
            WriteCheckpoint(tmp_path / "ckpt.json").start("r1", [_create("t1", boarding=boarding)], 50)

    def test_saved_op_data_is_replayed_unchanged(self, tmp_path):
        path = tmp_path / "ckpt.json"
        ops = [_create("t1", boarding={"_seconds": 1709280000, "_nanoseconds": 0}, gt=1.5)]
        WriteCheckpoint(path).start("r1", ops, 50)
        loaded = WriteCheckpoint(path)
        assert loaded.load()
        assert loaded.ops[0].data == ops[0].data

    def test_clear_is_noop_when_missing(self, tmp_path):
        WriteCheckpoint(tmp_path / "none.json").clear()
