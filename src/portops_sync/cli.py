"""portops_sync.cli

Unified CLI entrypoint for the charge → trip reconciliation engine.

Modes (--mode):
  reconcile : match charges to trips, confirm matched trips, create
              trips for unmatched charges (default)
  analyze   : read-only orphan diagnostics

Usage (reconcile):
    portops-sync \\
        --mode reconcile \\
        --db-dsn "$PORTOPS_DB_DSN" \\
        --config config/reconcile.yml

Usage (resume a reconcile that failed mid-write):
    portops-sync --mode reconcile --db-dsn "$PORTOPS_DB_DSN" --resume-from-checkpoint

Usage (analyze):
    portops-sync --mode analyze --db-dsn "$PORTOPS_DB_DSN"
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click
import psycopg

from portops_sync.config import VALID_ORPHAN_POLICIES, ConfigValidationError, load_config
from portops_sync.orphan_analysis import build_analysis_report, run_analyze
from portops_sync.reconcile import build_reconcile_report, run_reconcile
from portops_sync.shared import BatchCommitError, write_run_report
from portops_sync.store import PostgresDocumentStore


@click.command()
@click.option(
    "--mode",
    default="reconcile",
    type=click.Choice(["reconcile", "analyze"]),
    show_default=True,
    help="Run mode",
)
@click.option("--db-dsn", required=True, envvar="PORTOPS_DB_DSN", help="PostgreSQL DSN")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config file")
@click.option("--dry-run", is_flag=True, default=False, help="[reconcile] Plan only; write nothing")
@click.option(
    "--resume-from-checkpoint",
    is_flag=True,
    default=False,
    help="[reconcile] Continue the saved write plan from its first uncommitted chunk",
)
@click.option("--checkpoint-path", default=None, type=click.Path(), help="[reconcile] Write checkpoint file")
@click.option("--batch-size", default=None, type=int, help="[reconcile] Operations per commit (max 500)")
@click.option(
    "--orphan-policy",
    default=None,
    type=click.Choice(list(VALID_ORPHAN_POLICIES)),
    help="[reconcile] Whether charges migrated by an earlier run are re-created",
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", is_flag=True, default=False, help="Log engine progress to stderr")
def main(
    mode: str,
    db_dsn: str,
    config_path: str | None,
    dry_run: bool,
    resume_from_checkpoint: bool,
    checkpoint_path: str | None,
    batch_size: int | None,
    orphan_policy: str | None,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Charge → trip reconciliation CLI."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    try:
        config = load_config(Path(config_path) if config_path else None).with_overrides(
            batch_size=batch_size,
            orphan_policy=orphan_policy,
            checkpoint_path=Path(checkpoint_path) if checkpoint_path else None,
        )
    except (ConfigValidationError, FileNotFoundError) as exc:
        click.echo(f"[{run_id}] ERROR: invalid configuration: {exc}", err=True)
        sys.exit(2)

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    try:
        conn = psycopg.connect(db_dsn, autocommit=False)
    except psycopg.Error as exc:
        click.echo(f"[{run_id}] internal: cannot connect: {exc}", err=True)
        sys.exit(1)
    try:
        store = PostgresDocumentStore(conn)
        if mode == "analyze":
            analysis = run_analyze(store, config)
            click.echo(build_analysis_report(analysis))
            click.echo(json.dumps(analysis.to_result(), indent=2, default=str))
            counters = analysis
        else:
            ctrs = run_reconcile(
                store,
                config,
                run_id=run_id,
                dry_run=dry_run,
                resume=resume_from_checkpoint,
            )
            click.echo(build_reconcile_report(ctrs, dry_run=dry_run))
            click.echo(json.dumps(ctrs.to_result(dry_run=dry_run), indent=2, default=str))
            counters = ctrs
    except BatchCommitError as exc:
        click.echo(f"[{run_id}] internal: Sync failed: {exc}", err=True)
        click.echo(
            f"[{run_id}] Chunks before {exc.chunk_index} are committed; "
            f"re-run with --resume-from-checkpoint to continue.",
            err=True,
        )
        sys.exit(1)
    except Exception as exc:
        click.echo(f"[{run_id}] internal: {mode} failed: {exc}", err=True)
        sys.exit(1)
    finally:
        conn.close()

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"orphan_policy": config.orphan_policy, "batch_size": config.batch_size},
        counters,
        report_dir=config.report_dir,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


if __name__ == "__main__":
    main()
