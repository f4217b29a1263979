"""
visibility-recs: operator CLI for the recommendation lifecycle core.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Open the database.
  4. Execute the action.
  5. Report the result to stdout.

Install and run::

    pip install -e .
    visibility-recs --help
    visibility-recs init-db
    visibility-recs validate-config
    visibility-recs run-sweep
    visibility-recs cleanup-contexts
    visibility-recs mode-status --account-id 42
    visibility-recs replay-scan --account-id 42 --scan-id 1001
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="visibility-recs",
    help="Recommendation lifecycle core for the AI-visibility scanner.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from visibility_recs.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    from visibility_recs.utils.logging import configure_logging
    configure_logging(config.logging)


def _with_db_path(config, db_path: Optional[str]):
    """Return ``config`` with ``database.db_path`` overridden when given."""
    if not db_path:
        return config
    database = config.database.model_copy(update={"db_path": db_path})
    return config.model_copy(update={"database": database})


def _connect(config):
    from visibility_recs.db.connection import get_connection

    return get_connection(
        config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    )


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config.",
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file.",
    ),
) -> None:
    """Create the SQLite database and apply schema + migrations.

    Safe to run multiple times; all DDL uses IF NOT EXISTS.
    """
    from visibility_recs.db.migrations import run_migrations
    from visibility_recs.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _with_db_path(_load_config_or_exit(config_path), db_path)
    _configure_logging(config)

    typer.echo(f"Initializing database at: {config.database.db_path}")
    with _connect(config) as conn:
        apply_schema(conn)
        migrations_applied = run_migrations(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False, "--full", help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print the key thresholds.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Mode thresholds:   enter={config.mode.enter_threshold} exit={config.mode.exit_threshold}")
    typer.echo(f"  Refresh window:    {config.refresh.window_days} days")
    typer.echo(f"  Long-window tiers: {', '.join(config.refresh.long_window_tiers) or '-'}")
    typer.echo(f"  Detection floor:   {config.detection.min_confidence}")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("run-sweep")
def run_sweep(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    no_cleanup: bool = typer.Option(
        False, "--no-cleanup", help="Skip expiring stale contexts.",
    ),
    no_plateaus: bool = typer.Option(
        False, "--no-plateaus", help="Skip the score-plateau check.",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Rotate every due refresh cycle across all accounts.

    \b
    Steps:
      1. Find current cycles past their due date.
      2. Process them per account (failures isolated per account).
      3. Expire contexts whose window elapsed.
      4. Flag stalled scores.
    """
    from visibility_recs.pipeline.sweep import RefreshSweep

    config = _with_db_path(_load_config_or_exit(config_path), db_path)
    _configure_logging(config)

    result = RefreshSweep(config).run(
        cleanup_contexts=False if no_cleanup else None,
        check_plateaus=not no_plateaus,
    )

    typer.echo(f"run-sweep | run_slug={result.run_slug}")
    typer.echo(f"  Due cycles:       {result.cycles_due}")
    typer.echo(f"  Processed:        {result.cycles_processed}")
    typer.echo(f"  Replaced recs:    {result.recommendations_replaced}")
    typer.echo(f"  Contexts expired: {result.contexts_expired}")
    typer.echo(f"  Plateau alerts:   {len(result.plateau_accounts)}")
    for account_id, error in result.accounts_failed.items():
        typer.echo(f"  FAILED account {account_id}: {error}", err=True)
    for error in result.errors:
        typer.echo(f"  ERROR: {error}", err=True)

    typer.echo("")
    if result.status == "failed":
        typer.echo("[FAILED] Sweep failed.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Sweep {result.status}.")


@app.command("cleanup-contexts")
def cleanup_contexts(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Deactivate recommendation contexts whose window has elapsed."""
    from visibility_recs.lifecycle.context import ContextResolver

    config = _with_db_path(_load_config_or_exit(config_path), db_path)
    _configure_logging(config)

    with _connect(config) as conn:
        expired = ContextResolver(conn, config.refresh).cleanup_expired()

    typer.echo(f"[OK] Expired {expired} context(s).")


@app.command("mode-status")
def mode_status(
    account_id: int = typer.Option(..., "--account-id", help="Account to inspect."),
    history: int = typer.Option(5, "--history", help="Number of transitions to show."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Show an account's current mode, buffer-zone flag and recent transitions."""
    from visibility_recs.lifecycle.mode import ModeTransitionGate, mode_profile

    config = _with_db_path(_load_config_or_exit(config_path), db_path)
    _configure_logging(config)

    with _connect(config) as conn:
        gate = ModeTransitionGate(conn, config.mode)
        state = gate.current(account_id)
        transitions = gate.history(account_id, history)

    if state is None:
        typer.echo(f"Account {account_id} has no mode state yet (defaults to optimization).")
        raise typer.Exit(code=0)

    profile = mode_profile(state.current_mode)
    typer.echo(f"Account {account_id}")
    typer.echo(f"  Mode:            {state.current_mode.value}")
    typer.echo(f"  Since:           {state.mode_since.isoformat()}")
    typer.echo(f"  Current score:   {state.current_score}")
    typer.echo(f"  Highest score:   {state.highest_score_achieved}")
    typer.echo(f"  In buffer zone:  {state.in_buffer_zone}")
    typer.echo(f"  Focus areas:     {', '.join(profile['focus_areas'])}")
    if transitions:
        typer.echo("")
        typer.echo("Recent transitions:")
        for t in transitions:
            origin = t.from_mode.value if t.from_mode else "-"
            typer.echo(
                f"  {t.transitioned_at.isoformat()}  {origin} -> {t.to_mode.value}"
                f"  score={t.score}  reason={t.reason}"
            )


@app.command("replay-scan")
def replay_scan(
    account_id: int = typer.Option(..., "--account-id", help="Owning account."),
    scan_id: int = typer.Option(..., "--scan-id", help="Completed scan to (re)process."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run the completion pipeline for a stored scan.

    Steps already applied are idempotent: the score snapshot is reused and
    recommendations already evaluated against the scan are not re-detected.
    """
    from visibility_recs.errors import FatalPipelineError
    from visibility_recs.pipeline.orchestrator import CompletionOrchestrator

    config = _with_db_path(_load_config_or_exit(config_path), db_path)
    _configure_logging(config)

    with _connect(config) as conn:
        try:
            result = CompletionOrchestrator(conn, config).on_scan_complete(account_id, scan_id)
        except FatalPipelineError as exc:
            typer.echo(f"[FAILED] {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(f"replay-scan | run_slug={result.run_slug} | status={result.status}")
    for step in result.steps:
        suffix = f" ({step.error})" if step.error else ""
        typer.echo(f"  {step.name:<18}{step.status}{suffix}")
    typer.echo(f"  Mode: {result.mode.value if result.mode else '-'}"
               f"{' (transitioned)' if result.transitioned else ''}")
    typer.echo(f"  Detections: {len(result.detections)} | scored: {result.scored_count}"
               f" | elite candidates: {len(result.elite_candidate_ids)}")
    typer.echo("")
    typer.echo(f"[OK] Scan {scan_id} processed.")


if __name__ == "__main__":
    app()
