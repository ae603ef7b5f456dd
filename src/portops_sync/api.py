"""portops_sync.api

Remote procedures for the reconciliation engine.

    POST /reconcile  → Reconcile result (writes)
    POST /analyze    → Analyze result (read-only)

Neither takes a request body.  The database DSN comes from PORTOPS_DB_DSN and
an optional YAML config path from PORTOPS_CONFIG.  Failures surface as HTTP
500 with ``{"detail": {"code": "internal", "message": ...}}``.

Run with:
    uvicorn portops_sync.api:app
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import psycopg
from fastapi import Depends, FastAPI, HTTPException

from portops_sync.config import SyncConfig, load_config
from portops_sync.orphan_analysis import run_analyze
from portops_sync.reconcile import run_reconcile
from portops_sync.store import DocumentStore, PostgresDocumentStore

log = logging.getLogger(__name__)

app = FastAPI(title="portops-sync")


def _internal(message: str) -> HTTPException:
    return HTTPException(status_code=500, detail={"code": "internal", "message": message})


def get_config() -> SyncConfig:
    path = os.environ.get("PORTOPS_CONFIG")
    try:
        return load_config(Path(path) if path else None)
    except (ValueError, FileNotFoundError) as exc:
        raise _internal(f"invalid configuration: {exc}") from exc


def get_store() -> Iterator[DocumentStore]:
    dsn = os.environ.get("PORTOPS_DB_DSN")
    if not dsn:
        raise _internal("PORTOPS_DB_DSN is not set")
    try:
        conn = psycopg.connect(dsn, autocommit=False)
    except psycopg.Error as exc:
        raise _internal(f"cannot connect: {exc}") from exc
    try:
        yield PostgresDocumentStore(conn)
    finally:
        conn.close()


@app.post("/reconcile")
def reconcile(
    store: DocumentStore = Depends(get_store),
    config: SyncConfig = Depends(get_config),
) -> dict[str, Any]:
    run_id = str(uuid.uuid4())
    try:
        ctrs = run_reconcile(store, config, run_id=run_id)
    except Exception as exc:
        log.exception("Sync failed (run %s)", run_id)
        raise _internal(f"Sync failed: {exc}") from exc
    return ctrs.to_result()


@app.post("/analyze")
def analyze(
    store: DocumentStore = Depends(get_store),
    config: SyncConfig = Depends(get_config),
) -> dict[str, Any]:
    try:
        analysis = run_analyze(store, config)
    except Exception as exc:
        log.exception("Analysis failed")
        raise _internal(f"Analysis failed: {exc}") from exc
    return analysis.to_result()
