# icpqc/cli.py
"""
Command-line interface for the icpqc application, powered by Typer.
"""

import typer
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd
from rich.console import Console
from rich.table import Table

from icpqc.utils.logging import setup_logger, get_logger
from icpqc.utils.config import load_config, output_dir_from, resolve_store_paths
from icpqc.utils.hashing import config_hash
from icpqc.utils.paths import run_log_path
from icpqc.db import api as db_api
from icpqc.errors import IcpqcError
from icpqc.headers.schema import SchemaRegistry, build_schemas, reference_certificate
from icpqc.pipeline import ingest as ingest_mod
from icpqc.pipeline.correction import apply_corrections
from icpqc.qc import reports
from icpqc.qc.reports import CheckKind, Scope

# Create the main Typer application
app = typer.Typer(
    no_args_is_help=True,
    help="icpqc: QC ingestion and reporting for ICP elemental analysis exports.",
    context_settings={"help_option_names": ["-h", "--help"]},
)

console = Console()

# A shared dictionary to store global state from the callback
state: Dict[str, Any] = {}


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose (DEBUG) logging."
    ),
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="Path to the SQLite database file. Defaults to store.db or run.output_dir/icpqc.sqlite.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        resolve_path=True,
        help="Path to a YAML configuration file.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Path to a file for logging. Defaults to run.output_dir/run_logs/<date_time>__cfg-<hash>.log when a config is given.",
    ),
):
    """
    Main callback to set up logging and global state.
    """
    state["verbose"] = verbose
    state["db"] = db
    state["config"] = config_path
    state["log_file"] = log_file

    setup_logger(logfile=log_file, verbose=verbose)
    log = get_logger(__name__)
    log.debug("CLI context initialized. verbose=%s, db=%s, config=%s", verbose, db, config_path)


@contextmanager
def _store() -> Iterator[Tuple[sqlite3.Connection, SchemaRegistry, Path]]:
    """
    Resolve config and paths, open the database and make sure the schema and
    reference certificate exist. Yields (conn, registry, upload_dir).
    """
    log = get_logger(__name__)
    cfg: Dict[str, Any] = {}
    if state.get("config") is not None:
        cfg = load_config(state["config"])
        # Default log file: <run.output_dir>/run_logs/<date_time>__cfg-<hash>.log
        if state.get("log_file") is None:
            state["log_file"] = run_log_path(output_dir_from(cfg), config_hash(cfg))
            setup_logger(logfile=state["log_file"], verbose=state.get("verbose", False))

    db_path, upload_dir = resolve_store_paths(cfg, db_override=state.get("db"))
    registry = build_schemas()
    conn = db_api.connect(db_path)
    try:
        db_api.init_schema(conn)
        db_api.seed_reference_standards(conn, reference_certificate(registry))
        yield conn, registry, upload_dir
    finally:
        conn.close()
        log.debug("Database connection closed.")


@contextmanager
def _handle_errors(action: str) -> Iterator[None]:
    """Map every failure to exit code 1 with the message logged."""
    log = get_logger(__name__)
    try:
        yield
    except IcpqcError as e:
        log.error("%s failed: %s", action, e)
        raise typer.Exit(code=1)
    except (typer.Exit, typer.Abort):
        raise
    except Exception as e:
        log.exception("Failed to %s: %s", action, e)
        raise typer.Exit(code=1)


def _scope_from(run: Optional[int], start: Optional[str], end: Optional[str]) -> Scope:
    return Scope(run_id=run, start=start, end=end)


def _fmt(value: Optional[float], digits: int = 3) -> str:
    if value is None:
        return "-"
    return f"{value:.{digits}f}"


def _write_csv(records: List[Dict[str, Any]], out: Path) -> None:
    out.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame.from_records(records).to_csv(out, index=False)
    get_logger(__name__).info("Wrote %d rows to %s", len(records), out)


RUN_OPTION = typer.Option(None, "--run", "-r", help="Report on a single run id.")
START_OPTION = typer.Option(None, "--start", help="First upload day (YYYY-MM-DD).")
END_OPTION = typer.Option(None, "--end", help="Last upload day (YYYY-MM-DD).")
CHECK_OPTION = typer.Option(CheckKind.calibration, "--check", help="Which control check to evaluate.")


@app.command()
def init():
    """
    Create the database schema and seed the reference certificate.
    """
    log = get_logger(__name__)
    with _handle_errors("initialize the database"):
        with _store() as (conn, _, upload_dir):
            upload_dir.mkdir(parents=True, exist_ok=True)
            log.info("Store ready. Uploads go to %s", upload_dir)


@app.command()
def ingest(
    csv_path: Path = typer.Argument(
        ..., exists=True, file_okay=True, dir_okay=False, readable=True, help="Instrument CSV export."
    ),
    doc: Optional[Path] = typer.Option(
        None, "--doc", exists=True, dir_okay=False, readable=True, help="Companion document (e.g. the PDF report)."
    ),
    name: Optional[str] = typer.Option(
        None, "--name", help="Filename to record; defaults to the CSV file name."
    ),
):
    """
    Validate and ingest one instrument export, then apply run corrections.
    """
    log = get_logger(__name__)
    log.info("Executing 'ingest' for %s", csv_path)
    with _handle_errors("ingest file"):
        with _store() as (conn, registry, upload_dir):
            companion = (doc.name, doc.read_bytes()) if doc is not None else None
            result = ingest_mod.ingest(
                conn,
                registry,
                csv_path.read_bytes(),
                name or csv_path.name,
                upload_dir,
                companion=companion,
            )
            console.print(
                f"Run [bold]{result.run_id}[/bold] ({result.instrument.value}): "
                f"{result.samples} samples, {result.controls} control rows, "
                f"{len(result.factors)} correction factors"
            )


@app.command()
def ls(
    ctx: typer.Context,
):
    """
    List visible runs, newest first.
    """
    with _handle_errors("list runs"):
        with _store() as (conn, _, _upload_dir):
            runs = ingest_mod.list_runs(conn)
            table = Table(title="Uploaded runs")
            for column in ("id", "filename", "instrument", "uploaded_at", "samples", "controls", "document"):
                table.add_column(column)
            for run in runs:
                table.add_row(
                    str(run["id"]),
                    run["filename"],
                    run["instrument"],
                    run["uploaded_at"],
                    str(run["n_samples"]),
                    str(run["n_controls"]),
                    run["doc_name"] or "",
                )
            console.print(table)


@app.command()
def hide(run_id: int = typer.Argument(..., help="Run to hide.")):
    """
    Hide a run from all reports and free its filename.
    """
    with _handle_errors("hide run"):
        with _store() as (conn, _, _upload_dir):
            ingest_mod.hide_run(conn, run_id)
            console.print(f"Run {run_id} hidden.")


@app.command()
def recorrect(run_id: int = typer.Argument(..., help="Run to correct again.")):
    """
    Recompute a run's correction factors and corrected values.
    """
    with _handle_errors("recorrect run"):
        with _store() as (conn, registry, _upload_dir):
            with conn:
                result = apply_corrections(conn, run_id, registry)
            console.print(
                f"Run {run_id}: {len(result.factors)} factors, "
                f"{result.samples_corrected} sample values, {result.standards_corrected} standard values"
            )


@app.command("table")
def table_cmd(
    run: Optional[int] = RUN_OPTION,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    check: CheckKind = CHECK_OPTION,
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Also write the table to this CSV file."),
):
    """
    Per-analyte QC table (average, RSD, deviation, status).
    """
    with _handle_errors("build QC table"):
        with _store() as (conn, registry, _upload_dir):
            rows = reports.get_table(conn, registry, _scope_from(run, start, end), check)
            table = Table(title=f"QC table ({check.value})")
            for column in ("analyte", "avg", "RSD %", "target", "deviation %", "status"):
                table.add_column(column)
            for row in rows:
                table.add_row(
                    row.full_name,
                    _fmt(row.avg),
                    _fmt(row.rsd, 2),
                    _fmt(row.target),
                    _fmt(row.deviation, 2),
                    row.status,
                )
            console.print(table)
            if out is not None:
                _write_csv([row.as_dict() for row in rows], out)


@app.command()
def summary(
    run: Optional[int] = RUN_OPTION,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    check: CheckKind = CHECK_OPTION,
):
    """
    Tolerance summary for a run or a date range.
    """
    with _handle_errors("summarize QC"):
        with _store() as (conn, registry, _upload_dir):
            result = reports.get_summary(conn, registry, _scope_from(run, start, end), check)
            console.print(f"Analytes:            {result.total_analytes}")
            console.print(f"Within tolerance:    {result.within_tolerance}")
            console.print(f"Outside tolerance:   {result.outside_tolerance}")
            console.print(f"Not applicable:      {result.not_applicable}")
            console.print(f"Average RSD %:       {_fmt(result.avg_rsd, 2)}")
            console.print(f"Average deviation %: {_fmt(result.avg_percent_deviation, 2)}")
            if result.failing_analytes:
                console.print("Failing: " + ", ".join(result.failing_analytes))


@app.command()
def detail(
    analyte: str = typer.Argument(..., help="Analyte column, e.g. 'Ca 317.933 nm ppm'."),
    run: Optional[int] = RUN_OPTION,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    check: CheckKind = CHECK_OPTION,
    page: int = typer.Option(1, "--page", min=1, help="Page number (from 1)."),
    page_size: int = typer.Option(reports.DEFAULT_PAGE_SIZE, "--page-size", min=1, help="Rows per page."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Also write this page to a CSV file."),
):
    """
    Individual control measurements of one analyte.
    """
    with _handle_errors("build QC detail"):
        with _store() as (conn, registry, _upload_dir):
            result = reports.get_detail(
                conn, registry, _scope_from(run, start, end), analyte, page, page_size, check
            )
            table = Table(title=f"{analyte} ({check.value}) page {result.page}/{max(result.total_pages, 1)}")
            for column in ("run", "timestamp", "value", "units", "deviation %", "status"):
                table.add_column(column)
            for row in result.rows:
                table.add_row(
                    str(row.run_id),
                    row.timestamp.strftime("%Y-%m-%d %H:%M"),
                    _fmt(row.value),
                    row.units,
                    _fmt(row.deviation, 2),
                    row.status,
                )
            console.print(table)
            console.print(f"{result.total_items} measurements in total")
            if out is not None:
                _write_csv(
                    [
                        {
                            "run_id": r.run_id,
                            "timestamp": r.timestamp.isoformat(sep=" "),
                            "value": r.value,
                            "units": r.units,
                            "deviation": r.deviation,
                            "status": r.status,
                        }
                        for r in result.rows
                    ],
                    out,
                )


@app.command()
def values(
    analyte: str = typer.Argument(..., help="Analyte column, e.g. 'Ca 317.933 nm ppm'."),
    run: Optional[int] = RUN_OPTION,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
):
    """
    Corrected sample values of one analyte with their run's calibration status.
    """
    with _handle_errors("list element values"):
        with _store() as (conn, registry, _upload_dir):
            items = reports.element_values(conn, registry, analyte, _scope_from(run, start, end))
            table = Table(title=f"{analyte} (corrected)")
            for column in ("sample", "run", "value", "calibration"):
                table.add_column(column)
            for item in items:
                table.add_row(item.sample, str(item.run_id), _fmt(item.value), item.status)
            console.print(table)


@app.command()
def dashboard(
    days: int = typer.Option(7, "--days", min=1, help="Window for the calibration pass rate."),
):
    """
    Headline numbers: runs, samples, recent calibration pass rate.
    """
    with _handle_errors("build dashboard"):
        with _store() as (conn, registry, _upload_dir):
            result = reports.dashboard(conn, registry, days=days)
            console.print(f"Active runs:   {result.active_runs}")
            console.print(f"Samples:       {result.samples}")
            console.print(
                f"Pass rate ({days}d): {result.pass_rate:.2f}% "
                f"({result.passed_checks}/{result.total_checks} checks over {result.runs_checked} runs)"
            )


if __name__ == "__main__":
    app()
