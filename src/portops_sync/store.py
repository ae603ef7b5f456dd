"""portops_sync.store

Document collections and the record loader.

A collection is a set of JSON documents addressed by string id.  The
production store keeps each collection in a PostgreSQL table
``(id text primary key, doc jsonb, created_at timestamptz)``; an in-memory
store with the same contract backs unit tests.

Write contract (commit_chunk):
  - ``create`` inserts a new document under the planned id; an id that
    already exists is left untouched, so replaying a committed chunk is
    harmless.
  - ``update`` shallow-merges fields into an existing document; a missing
    document is an error.
  - All operations of one chunk apply atomically or not at all.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb

from portops_sync.records import Charge, Trip
from portops_sync.shared import DocumentNotFoundError, LoadError

log = logging.getLogger(__name__)

OP_CREATE = "create"
OP_UPDATE = "update"


def new_document_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Write operations
# ---------------------------------------------------------------------------

@dataclass
class WriteOp:
    kind: str  # OP_CREATE | OP_UPDATE
    trip_id: str
    data: dict[str, Any]
    charge_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "trip_id": self.trip_id,
            "charge_id": self.charge_id,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WriteOp:
        if raw.get("kind") not in (OP_CREATE, OP_UPDATE):
            raise ValueError(f"unknown write op kind: {raw.get('kind')!r}")
        return cls(
            kind=raw["kind"],
            trip_id=str(raw["trip_id"]),
            data=dict(raw["data"]),
            charge_id=raw.get("charge_id"),
        )


# ---------------------------------------------------------------------------
# Store protocol + implementations
# ---------------------------------------------------------------------------

class DocumentStore(Protocol):
    def fetch_all(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """Return every (id, document) of a collection in stable load order."""
        ...

    def commit_chunk(self, collection: str, ops: list[WriteOp]) -> None:
        """Apply ops atomically; raise on any failure."""
        ...


class PostgresDocumentStore:
    """Collections stored as jsonb tables.  The connection must not be in
    autocommit mode: each chunk is committed (or rolled back) explicitly."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def fetch_all(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        rows = self._conn.execute(
            sql.SQL("SELECT id, doc FROM {} ORDER BY created_at, id").format(
                sql.Identifier(collection)
            )
        ).fetchall()
        return [(str(row[0]), dict(row[1] or {})) for row in rows]

    def commit_chunk(self, collection: str, ops: list[WriteOp]) -> None:
        table = sql.Identifier(collection)
        try:
            for op in ops:
                if op.kind == OP_CREATE:
                    self._conn.execute(
                        sql.SQL(
                            "INSERT INTO {} (id, doc) VALUES (%s, %s) "
                            "ON CONFLICT (id) DO NOTHING"
                        ).format(table),
                        (op.trip_id, Jsonb(op.data)),
                    )
                else:
                    cur = self._conn.execute(
                        sql.SQL("UPDATE {} SET doc = doc || %s WHERE id = %s").format(table),
                        (Jsonb(op.data), op.trip_id),
                    )
                    if cur.rowcount == 0:
                        raise DocumentNotFoundError(
                            f"{collection}/{op.trip_id} does not exist"
                        )
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise


@dataclass
class MemoryDocumentStore:
    """Dict-backed store (used in tests / local experiments)."""

    collections: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    commits: int = 0

    def fetch_all(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        docs = self.collections.get(collection, {})
        return [(doc_id, copy.deepcopy(doc)) for doc_id, doc in docs.items()]

    def commit_chunk(self, collection: str, ops: list[WriteOp]) -> None:
        staged = copy.deepcopy(self.collections.get(collection, {}))
        for op in ops:
            if op.kind == OP_CREATE:
                staged.setdefault(op.trip_id, copy.deepcopy(op.data))
            else:
                if op.trip_id not in staged:
                    raise DocumentNotFoundError(f"{collection}/{op.trip_id} does not exist")
                staged[op.trip_id].update(copy.deepcopy(op.data))
        self.collections[collection] = staged
        self.commits += 1


# ---------------------------------------------------------------------------
# Record loader
# ---------------------------------------------------------------------------

@dataclass
class Snapshot:
    charges: list[Charge]
    trips: list[Trip]


def load_snapshot(
    store: DocumentStore,
    charge_collection: str = "charge",
    trip_collection: str = "trip",
) -> Snapshot:
    """Two unfiltered, unpaginated reads.  Any failure aborts the run."""
    try:
        raw_charges = store.fetch_all(charge_collection)
    except Exception as exc:
        raise LoadError(f"failed to load {charge_collection}: {exc}") from exc
    log.info("Loaded %d charges", len(raw_charges))

    try:
        raw_trips = store.fetch_all(trip_collection)
    except Exception as exc:
        raise LoadError(f"failed to load {trip_collection}: {exc}") from exc
    log.info("Loaded %d trips", len(raw_trips))

    return Snapshot(
        charges=[Charge.from_doc(doc_id, doc) for doc_id, doc in raw_charges],
        trips=[Trip.from_doc(doc_id, doc) for doc_id, doc in raw_trips],
    )
