# icpqc/qc/reports.py
"""
Store-backed QC reports.

Every report works on a `Scope`: either one run, or every visible run
uploaded between two dates (inclusive). Date scopes aggregate each
instrument type over its own runs and list major lines before trace lines.

Two checks are available:
  • calibration  the calibration-check standard (raw values) against the
                 concentration in its label
  • secondary    the SJS-Std standard (corrected values) against its
                 certificate
"""

from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from icpqc.db import api as db_api
from icpqc.errors import ValidationError
from icpqc.headers.schema import (
    CanonicalSchema,
    InstrumentType,
    SchemaRegistry,
    companion_name,
)
from icpqc.qc.tolerance import (
    QcRow,
    QcSummary,
    build_calibration_rows,
    build_secondary_rows,
    collapse_variants,
    is_within,
    label_target,
    percent_deviation,
    summarize,
)
from icpqc.utils.logging import get_logger

log = get_logger(__name__)

DATE_FORMAT = "%Y-%m-%d"
DEFAULT_PAGE_SIZE = 20


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from None


class CheckKind(str, enum.Enum):
    calibration = "calibration"
    secondary = "secondary"


@dataclass(frozen=True, slots=True)
class Scope:
    """A single run, or an inclusive YYYY-MM-DD date range over upload time."""

    run_id: Optional[int] = None
    start: Optional[str] = None
    end: Optional[str] = None

    def __post_init__(self) -> None:
        has_range = self.start is not None or self.end is not None
        if (self.run_id is None) == (not has_range):
            raise ValidationError("Give either a run id or a start and end date")
        if has_range:
            if self.start is None or self.end is None:
                raise ValidationError("A date range needs both a start and an end date")
            start, end = _parse_date(self.start), _parse_date(self.end)
            if start > end:
                raise ValidationError("Start date is after end date")
            # store canonical zero-padded dates; the SQL filters compare them as text
            object.__setattr__(self, "start", start.isoformat())
            object.__setattr__(self, "end", end.isoformat())

    @classmethod
    def for_run(cls, run_id: int) -> "Scope":
        return cls(run_id=run_id)

    @classmethod
    def between(cls, start: str, end: str) -> "Scope":
        return cls(start=start, end=end)

    @property
    def is_run(self) -> bool:
        return self.run_id is not None


@dataclass(slots=True)
class DetailRow:
    run_id: int
    timestamp: datetime
    value: float
    units: str
    deviation: Optional[float]
    status: str


@dataclass(slots=True)
class DetailPage:
    rows: List[DetailRow]
    total_items: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_items + self.page_size - 1) // self.page_size


@dataclass(slots=True)
class Dashboard:
    active_runs: int
    samples: int
    runs_checked: int
    total_checks: int
    passed_checks: int
    pass_rate: float


@dataclass(slots=True)
class ElementValue:
    run_id: int
    sample: str
    value: float
    status: str


def _status(within: Optional[bool]) -> str:
    if within is None:
        return "N/A"
    return "Pass" if within else "Fail"


# ---------------------------------------------------------------------------
# Scope resolution
# ---------------------------------------------------------------------------

def resolve_runs(
    conn: sqlite3.Connection,
    scope: Scope,
    only: Optional[InstrumentType] = None,
) -> List[Tuple[InstrumentType, List[int]]]:
    """
    (instrument, run ids) pairs for a scope, major first. Instruments without
    runs are left out.

    Raises:
        ValidationError: a run scope names an unknown or hidden run.
    """
    if scope.is_run:
        run = db_api.get_run(conn, scope.run_id)
        if run is None or run["hidden"]:
            raise ValidationError(f"Run {scope.run_id} not found", {"run_id": scope.run_id})
        instrument = InstrumentType(run["instrument"])
        if only is not None and instrument is not only:
            return []
        return [(instrument, [run["id"]])]

    out = []
    for instrument in (InstrumentType.major, InstrumentType.trace):
        if only is not None and instrument is not only:
            continue
        run_ids = db_api.select_run_ids(conn, scope.start, scope.end, instrument.value)
        if run_ids:
            out.append((instrument, run_ids))
    return out


def _analyte_instrument(registry: SchemaRegistry, analyte: str) -> InstrumentType:
    instrument = registry.instrument_of(analyte)
    if instrument is None:
        raise ValidationError(f"Unknown analyte '{analyte}'", {"analyte": analyte})
    return instrument


# ---------------------------------------------------------------------------
# Tables and summaries
# ---------------------------------------------------------------------------

def _calibration_rows(conn, schema: CanonicalSchema, run_ids: List[int]) -> List[QcRow]:
    label = schema.profile.calibration_label
    stats = db_api.control_column_stats(conn, run_ids, label, schema.analytes)
    measured = [c for c in schema.analytes if stats[c]["n"]]
    return build_calibration_rows(stats, label, measured)


def _secondary_rows(conn, schema: CanonicalSchema, run_ids: List[int]) -> List[QcRow]:
    corrected = db_api.control_column_stats(conn, run_ids, db_api.REFERENCE_LABEL, schema.corrected)
    stats = {analyte: corrected[companion_name(analyte)] for analyte in schema.analytes}
    measured = [c for c in schema.analytes if stats[c]["n"]]
    reference = db_api.fetch_reference_values(conn)
    return build_secondary_rows(
        stats,
        reference.get(db_api.REFERENCE_LABEL, {}),
        reference.get(db_api.ERROR_LABEL, {}),
        measured,
    )


def get_table(
    conn: sqlite3.Connection,
    registry: SchemaRegistry,
    scope: Scope,
    check: CheckKind | str = CheckKind.calibration,
) -> List[QcRow]:
    """
    Collapsed QC lines for a scope. Analytes with no numeric measurement in
    scope are not listed.
    """
    check = CheckKind(check)
    rows: List[QcRow] = []
    for instrument, run_ids in resolve_runs(conn, scope):
        schema = registry.for_type(instrument)
        if check is CheckKind.calibration:
            part = _calibration_rows(conn, schema, run_ids)
        else:
            part = _secondary_rows(conn, schema, run_ids)
        log.debug("%s check over %d %s run(s): %d lines", check.value, len(run_ids), instrument.value, len(part))
        rows.extend(collapse_variants(part))
    return rows


def get_summary(
    conn: sqlite3.Connection,
    registry: SchemaRegistry,
    scope: Scope,
    check: CheckKind | str = CheckKind.calibration,
) -> QcSummary:
    return summarize(get_table(conn, registry, scope, check))


# ---------------------------------------------------------------------------
# Detail
# ---------------------------------------------------------------------------

def _detail_frame(
    conn: sqlite3.Connection,
    registry: SchemaRegistry,
    scope: Scope,
    analyte: str,
    check: CheckKind,
) -> Tuple[pd.DataFrame, str]:
    instrument = _analyte_instrument(registry, analyte)
    schema = registry.for_type(instrument)
    profile = schema.profile

    if check is CheckKind.calibration:
        label = profile.calibration_label
        value_column = analyte
        target = label_target(label)
        applicable = True
    else:
        label = db_api.REFERENCE_LABEL
        value_column = companion_name(analyte)
        reference = db_api.fetch_reference_values(conn)
        target = reference.get(db_api.REFERENCE_LABEL, {}).get(analyte)
        error = reference.get(db_api.ERROR_LABEL, {}).get(analyte)
        applicable = bool(target) and bool(error)

    records: List[Dict[str, Any]] = []
    for _, run_ids in resolve_runs(conn, scope, only=instrument):
        for row in db_api.control_series(conn, run_ids, label, value_column, profile.timestamp_column):
            records.append(dict(row))

    frame = pd.DataFrame.from_records(
        records, columns=["run_id", "uploaded_at", "row_index", "timestamp_text", "value"]
    )
    if frame.empty:
        return frame.assign(timestamp=pd.Series(dtype="datetime64[ns]"), deviation=[], status=[]), profile.units

    frame["timestamp"] = pd.to_datetime(
        frame["timestamp_text"], format=profile.timestamp_format, errors="coerce"
    )
    frame["value"] = pd.to_numeric(frame["value"], errors="coerce")
    frame = frame.dropna(subset=["timestamp", "value"])
    frame = frame.sort_values(["uploaded_at", "run_id", "timestamp", "row_index"], kind="mergesort")

    deviations = []
    statuses = []
    for value in frame["value"]:
        deviation = percent_deviation(float(value), target) if applicable else None
        deviations.append(deviation)
        statuses.append(_status(is_within(deviation)))
    frame["deviation"] = deviations
    frame["status"] = statuses
    return frame.reset_index(drop=True), profile.units


def get_detail(
    conn: sqlite3.Connection,
    registry: SchemaRegistry,
    scope: Scope,
    analyte: str,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    check: CheckKind | str = CheckKind.calibration,
) -> DetailPage:
    """
    Individual control measurements of one analyte, ordered by run upload
    time then acquisition time, one page at a time (pages start at 1).
    """
    if page < 1:
        raise ValidationError("Page numbers start at 1", {"page": page})
    if page_size < 1:
        raise ValidationError("Page size must be positive", {"page_size": page_size})

    frame, units = _detail_frame(conn, registry, scope, analyte, CheckKind(check))
    start = (page - 1) * page_size
    window = frame.iloc[start:start + page_size]

    rows = [
        DetailRow(
            run_id=int(item.run_id),
            timestamp=item.timestamp.to_pydatetime(),
            value=float(item.value),
            units=units,
            deviation=None if pd.isna(item.deviation) else float(item.deviation),
            status=item.status,
        )
        for item in window.itertuples(index=False)
    ]
    return DetailPage(rows=rows, total_items=len(frame), page=page, page_size=page_size)


# ---------------------------------------------------------------------------
# Dashboard and per-element sample values
# ---------------------------------------------------------------------------

def dashboard(
    conn: sqlite3.Connection,
    registry: SchemaRegistry,
    days: int = 7,
    now: Optional[datetime] = None,
) -> Dashboard:
    """
    Headline numbers: visible runs, samples, and the calibration pass rate
    over the lines judged in runs uploaded during the last `days` days.
    """
    now = now or datetime.now(timezone.utc)
    since = (now - timedelta(days=days)).strftime("%Y-%m-%d %H:%M:%S")

    runs = db_api.runs_uploaded_since(conn, since)
    total = passed = 0
    for run in runs:
        summary = get_summary(conn, registry, Scope.for_run(run["id"]), CheckKind.calibration)
        total += summary.within_tolerance + summary.outside_tolerance
        passed += summary.within_tolerance

    return Dashboard(
        active_runs=db_api.count_active_runs(conn),
        samples=db_api.count_samples(conn),
        runs_checked=len(runs),
        total_checks=total,
        passed_checks=passed,
        pass_rate=round(passed / total * 100, 2) if total else 0.0,
    )


def element_values(
    conn: sqlite3.Connection,
    registry: SchemaRegistry,
    analyte: str,
    scope: Scope,
) -> List[ElementValue]:
    """
    Corrected value of one analyte for every sample in scope, with the
    calibration status of that analyte in the sample's run.
    """
    instrument = _analyte_instrument(registry, analyte)
    schema = registry.for_type(instrument)
    label = schema.profile.calibration_label
    target = label_target(label)

    out: List[ElementValue] = []
    run_status: Dict[int, str] = {}
    for _, run_ids in resolve_runs(conn, scope, only=instrument):
        for run_id in run_ids:
            stats = db_api.control_column_stats(conn, [run_id], label, [analyte])
            run_status[run_id] = _status(is_within(percent_deviation(stats[analyte]["avg"], target)))
        for row in db_api.sample_column_values(conn, run_ids, companion_name(analyte)):
            out.append(
                ElementValue(
                    run_id=row["run_id"],
                    sample=row["solution_label"],
                    value=row["value"],
                    status=run_status[row["run_id"]],
                )
            )
    return out
