"""
FX Favorability Tracker CLI.

Every command loads ``AppConfig``, configures logging, does its work and
prints the result. Machine-readable results (scores, histories, run reports)
go to stdout as JSON; warnings and errors go to stderr.

Install and run::

    pip install -e .
    fx-favorability --help
    fx-favorability init-db
    fx-favorability record
    fx-favorability score "USD->COP"
    fx-favorability append "USD->COP" 4170.25 --at 2026-10-19T07:00:00Z
    fx-favorability history "USD->COP" --limit 10
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer

app = typer.Typer(
    name="fx-favorability",
    help="Exchange-rate history and buyer/seller favorability scoring.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _bootstrap(config_path: Optional[str], with_logging: bool = True):
    """Return the validated ``AppConfig``; exit 1 if it cannot be loaded."""
    from fx_favorability.config import load_config
    from fx_favorability.utils.logging import configure_logging

    try:
        config = load_config(Path(config_path) if config_path else None)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1)

    if with_logging:
        configure_logging(config.logging)
    return config


@contextmanager
def _database(config, db_path: Optional[str]) -> Iterator:
    """Open the configured SQLite database with the schema in place."""
    from fx_favorability.db.connection import get_connection
    from fx_favorability.db.schema import apply_schema

    with get_connection(
        db_path or config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        yield conn


@contextmanager
def _history(config, db_path: Optional[str]) -> Iterator:
    """Yield a ``TimeSeriesStore`` backed by the SQLite key-value table."""
    from fx_favorability.db.repositories.kv_repo import SqliteKeyValueStore
    from fx_favorability.history.store import TimeSeriesStore

    with _database(config, db_path) as conn:
        yield TimeSeriesStore(SqliteKeyValueStore(conn), config.history)


def _emit(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


_PAIR_ARGUMENT = typer.Argument(..., help='Pair identifier, e.g. "USD->COP".')
_DB_PATH_OPTION = typer.Option(None, "--db-path", help="Override DB path from config.")
_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")


# ── Setup ─────────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Create the SQLite database and its tables (safe to re-run)."""
    from fx_favorability.db.schema import ALL_TABLE_NAMES, get_existing_tables

    config = _bootstrap(config_path)
    target = db_path or config.database.db_path

    with _database(config, target) as conn:
        present = set(get_existing_tables(conn))

    typer.echo(f"Database: {target}")
    for name in ALL_TABLE_NAMES:
        typer.echo(f"  {name:<14} {'ok' if name in present else 'MISSING'}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = _CONFIG_OPTION,
    show_full: bool = typer.Option(False, "--full", help="Print the full config as JSON."),
) -> None:
    """Check the configuration and print the values that drive scoring."""
    config = _bootstrap(config_path, with_logging=False)

    rows = (
        ("Database path", config.database.db_path),
        ("Base currency", config.rates.base),
        ("Symbols", ", ".join(config.rates.symbols)),
        ("Cross pairs", ", ".join(f"{k}->{v}" for k, v in config.rates.cross_pairs.items()) or "-"),
        ("Max samples", config.history.max_samples),
        ("Min gap (min)", f"{config.history.min_gap_minutes:g}"),
        ("Lookback", config.scoring.lookback),
        ("Momentum weight", f"{config.scoring.momentum_weight:g}"),
        ("Z max", f"{config.scoring.z_max:g}"),
        ("Log level", config.logging.level),
    )
    for label, value in rows:
        typer.echo(f"  {label + ':':<18}{value}")

    if show_full:
        typer.echo("")
        _emit(config.model_dump(mode="json"))

    typer.echo("[OK] Config valid.")


# ── Recording ─────────────────────────────────────────────────────────────────

@app.command("record")
def record(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Fetch and score against an empty in-memory history; write nothing.",
    ),
) -> None:
    """Fetch the latest rates, append them to each pair's history and score."""
    from fx_favorability.pipeline.record import RecordRatesStage
    from fx_favorability.storage.kv import InMemoryKeyValueStore

    config = _bootstrap(config_path)
    stage = RecordRatesStage(
        config,
        db_path=db_path,
        persist_runs=not dry_run,
        kv=InMemoryKeyValueStore() if dry_run else None,
    )
    run = stage.run()

    if not stage.reports:
        typer.echo("[WARN] No rates fetched; nothing recorded.", err=True)
        raise typer.Exit(code=2)

    _emit({
        "runSlug": run.run_slug,
        "dryRun": dry_run,
        "pairs": [r.to_dict() for r in stage.reports],
    })


@app.command("append")
def append(
    pair: str = _PAIR_ARGUMENT,
    rate: float = typer.Argument(..., help="Observed rate."),
    at: Optional[str] = typer.Option(
        None, "--at", help="ISO-8601 observation time (default: now, UTC)."
    ),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Append a manual observation to a pair's history and print its score."""
    from pydantic import ValidationError

    from fx_favorability.models.series import Sample
    from fx_favorability.scoring.favorability import FavorabilityEngine
    from fx_favorability.utils.time_utils import format_timestamp, parse_timestamp, utcnow

    config = _bootstrap(config_path)

    try:
        sample = Sample(timestamp=parse_timestamp(at) if at else utcnow(), value=rate)
    except (ValueError, ValidationError) as exc:
        typer.echo(f"[ERROR] Invalid observation: {exc}", err=True)
        raise typer.Exit(code=1)

    with _history(config, db_path) as store:
        doc = store.append(pair, sample)

    _emit({
        "pair": pair,
        "samples": len(doc.samples),
        "updatedAt": format_timestamp(doc.updated_at) if doc.updated_at else "",
        "score": FavorabilityEngine(config.scoring).score(doc.values()).to_dict(),
    })


# ── Inspection ────────────────────────────────────────────────────────────────

@app.command("score")
def score(
    pair: str = _PAIR_ARGUMENT,
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Score the newest stored observation of a pair without appending."""
    from fx_favorability.scoring.favorability import FavorabilityEngine

    config = _bootstrap(config_path)
    with _history(config, db_path) as store:
        doc = store.load(pair)

    if not doc.samples:
        typer.echo(f"[WARN] No history stored for {pair}; score is neutral.", err=True)

    _emit({
        "pair": pair,
        "samples": len(doc.samples),
        "current": doc.last.value if doc.last else None,
        "score": FavorabilityEngine(config.scoring).score(doc.values()).to_dict(),
    })


@app.command("history")
def history(
    pair: str = _PAIR_ARGUMENT,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Newest N samples to show."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Print a pair's stored document (newest ``--limit`` samples)."""
    config = _bootstrap(config_path)
    with _history(config, db_path) as store:
        doc = store.load(pair)

    payload = doc.model_dump(mode="json", by_alias=True)
    payload["count"] = len(doc.samples)
    payload["samples"] = payload["samples"][-limit:]
    _emit(payload)


if __name__ == "__main__":
    app()
