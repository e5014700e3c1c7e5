# icpqc/qc/tolerance.py
"""
Pure QC arithmetic: RSD, percent deviation, tolerance checks, duplicate-line
collapsing and summaries. Nothing here touches the database.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from icpqc.headers.schema import element_of

TOLERANCE_PCT = 10.0

_NUMBER_RE = re.compile(r"[\d.]+")


@dataclass(slots=True)
class QcRow:
    """One analyte line of a QC table."""

    full_name: str
    element: str
    avg: Optional[float]
    rsd: Optional[float]
    target: Optional[float]
    deviation: Optional[float]
    within: Optional[bool]

    @property
    def status(self) -> str:
        if self.within is None:
            return "N/A"
        return "Pass" if self.within else "Fail"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "full_name": self.full_name,
            "element": self.element,
            "avg": self.avg,
            "rsd": self.rsd,
            "target": self.target,
            "deviation": self.deviation,
            "within": self.within,
            "status": self.status,
        }


@dataclass(slots=True)
class QcSummary:
    total_analytes: int
    within_tolerance: int
    outside_tolerance: int
    not_applicable: int
    avg_rsd: Optional[float]
    avg_percent_deviation: Optional[float]
    failing_analytes: List[str] = field(default_factory=list)


def compute_rsd(avg: Optional[float], avg_sq: Optional[float]) -> Optional[float]:
    """
    Relative standard deviation (%) from the mean and the mean of squares.

    Population variance is clamped at 0 to absorb rounding; a zero mean gives 0.
    """
    if avg is None:
        return None
    if avg == 0:
        return 0.0
    if avg_sq is None:
        return None
    variance = max(avg_sq - avg * avg, 0.0)
    return math.sqrt(variance) / avg * 100.0


def label_target(label: str) -> Optional[float]:
    """Nominal concentration written in a control label ("QC MES 5 ppm" -> 5.0)."""
    for match in _NUMBER_RE.finditer(label or ""):
        try:
            return float(match.group(0))
        except ValueError:
            continue
    return None


def percent_deviation(avg: Optional[float], target: Optional[float]) -> Optional[float]:
    if avg is None or target is None or target == 0:
        return None
    return abs(avg - target) / target * 100.0


def is_within(deviation: Optional[float], tolerance: float = TOLERANCE_PCT) -> Optional[bool]:
    if deviation is None:
        return None
    return deviation <= tolerance


def _stat(stats: Mapping[str, Mapping[str, Any]], column: str, key: str) -> Optional[float]:
    return (stats.get(column) or {}).get(key)


def build_calibration_rows(
    stats: Mapping[str, Mapping[str, Any]],
    label: str,
    columns: Optional[Sequence[str]] = None,
    tolerance: float = TOLERANCE_PCT,
) -> List[QcRow]:
    """
    Rows for the calibration check: every analyte is compared with the
    concentration written in the control label.

    Args:
        stats: {column: {"avg": ..., "avg_sq": ...}} from the control aggregates.
        label: The control label the stats were computed over.
        columns: Output order; defaults to the order of `stats`.
    """
    target = label_target(label)
    rows = []
    for column in columns if columns is not None else list(stats):
        avg = _stat(stats, column, "avg")
        deviation = percent_deviation(avg, target)
        rows.append(
            QcRow(
                full_name=column,
                element=element_of(column),
                avg=avg,
                rsd=compute_rsd(avg, _stat(stats, column, "avg_sq")),
                target=target,
                deviation=deviation,
                within=is_within(deviation, tolerance),
            )
        )
    return rows


def build_secondary_rows(
    stats: Mapping[str, Mapping[str, Any]],
    certified: Mapping[str, Optional[float]],
    error_bounds: Mapping[str, Optional[float]],
    columns: Optional[Sequence[str]] = None,
    tolerance: float = TOLERANCE_PCT,
) -> List[QcRow]:
    """
    Rows for the secondary-standard check, keyed by analyte name.

    `stats` holds the corrected averages keyed by the analyte (not the
    companion) name. An analyte whose certified value or error bound is zero
    or missing is reported but not judged.
    """
    rows = []
    for column in columns if columns is not None else list(stats):
        avg = _stat(stats, column, "avg")
        target = certified.get(column)
        error = error_bounds.get(column)
        applicable = bool(target) and bool(error)
        deviation = percent_deviation(avg, target) if applicable else None
        rows.append(
            QcRow(
                full_name=column,
                element=element_of(column),
                avg=avg,
                rsd=compute_rsd(avg, _stat(stats, column, "avg_sq")),
                target=target,
                deviation=deviation,
                within=is_within(deviation, tolerance) if applicable else None,
            )
        )
    return rows


def collapse_variants(rows: Iterable[QcRow]) -> List[QcRow]:
    """
    Drop the failing line of an element measured on exactly two lines when
    the other one passes. Groups keep first-seen order; every other group is
    returned whole.
    """
    groups: Dict[str, List[QcRow]] = {}
    for row in rows:
        groups.setdefault(row.element, []).append(row)

    out: List[QcRow] = []
    for members in groups.values():
        passing = [r for r in members if r.within is True]
        if len(members) == 2 and len(passing) == 1:
            out.extend(passing)
        else:
            out.extend(members)
    return out


def _mean_or_none(values: Sequence[Optional[float]]) -> Optional[float]:
    defined = [v for v in values if v is not None]
    if not defined:
        return None
    return round(float(np.mean(defined)), 2)


def summarize(rows: Sequence[QcRow]) -> QcSummary:
    within = [r for r in rows if r.within is True]
    outside = [r for r in rows if r.within is False]
    return QcSummary(
        total_analytes=len(rows),
        within_tolerance=len(within),
        outside_tolerance=len(outside),
        not_applicable=len(rows) - len(within) - len(outside),
        avg_rsd=_mean_or_none([r.rsd for r in rows]),
        avg_percent_deviation=_mean_or_none([r.deviation for r in rows]),
        failing_analytes=[r.full_name for r in outside],
    )
