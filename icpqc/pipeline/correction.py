# icpqc/pipeline/correction.py
"""
Per-run correction factors.

For every analyte the calibration-check standard of a run (e.g. "QC MES 5 ppm"
on the major instrument) is averaged and compared with its nominal value:

    factor    = (target - avg) / target
    corrected = raw * (1 + factor)

The corrected value is stored as `<analyte>_Corrected` on every sample linked
to the run and on the run's secondary-standard (SJS-Std) control rows. The
computation only reads raw columns, so running it twice gives the same result.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from icpqc.db import api as db_api
from icpqc.errors import ValidationError
from icpqc.headers.schema import InstrumentType, SchemaRegistry, companion_name
from icpqc.utils.logging import get_logger

log = get_logger(__name__)

SECONDARY_LABEL = db_api.REFERENCE_LABEL


@dataclass(slots=True)
class CorrectionResult:
    run_id: int
    factors: Dict[str, float] = field(default_factory=dict)
    samples_corrected: int = 0
    standards_corrected: int = 0


def correction_factor(avg: Optional[float], target: float) -> Optional[float]:
    if avg is None or not target:
        return None
    return (target - avg) / target


def compute_factors(
    conn: sqlite3.Connection,
    run_id: int,
    registry: SchemaRegistry,
    instrument: InstrumentType | str,
) -> Dict[str, float]:
    """Factors for every analyte of the run that has a calibration average."""
    schema = registry.for_type(instrument)
    profile = schema.profile
    stats = db_api.control_column_stats(conn, [run_id], profile.calibration_label, schema.analytes)

    factors: Dict[str, float] = {}
    for analyte in schema.analytes:
        factor = correction_factor(stats[analyte]["avg"], profile.calibration_target)
        if factor is None:
            log.debug("Run %s: no calibration average for %s; skipped", run_id, analyte)
            continue
        factors[analyte] = factor
    return factors


def _write_corrected(
    conn: sqlite3.Connection,
    table: str,
    owner_ids,
    factors: Mapping[str, float],
) -> int:
    written = 0
    for row in db_api.numeric_values_for(conn, table, owner_ids, list(factors)):
        factor = factors[row["column_name"]]
        db_api.set_numeric_value(
            conn, table, row["owner_id"], companion_name(row["column_name"]), row["value_num"] * (1 + factor)
        )
        written += 1
    return written


def apply_corrections(conn: sqlite3.Connection, run_id: int, registry: SchemaRegistry) -> CorrectionResult:
    """
    Compute this run's factors and write the corrected companions.

    Runs inside the caller's transaction; nothing is committed here.

    Raises:
        ValidationError: the run does not exist.
    """
    run = db_api.get_run(conn, run_id)
    if run is None:
        raise ValidationError(f"Run {run_id} not found", {"run_id": run_id})

    schema = registry.for_type(run["instrument"])
    factors = compute_factors(conn, run_id, registry, run["instrument"])
    result = CorrectionResult(run_id=run_id, factors=factors)

    sample_ids = db_api.run_sample_ids(conn, run_id)
    standard_ids = db_api.control_row_ids(conn, run_id, SECONDARY_LABEL)
    # a companion left from an earlier run would no longer match the raw value
    stale = [companion_name(a) for a in schema.analytes]
    db_api.delete_values(conn, "sample_values", sample_ids, stale)
    db_api.delete_values(conn, "control_values", standard_ids, stale)

    if not factors:
        log.warning("Run %s has no usable calibration averages; nothing corrected", run_id)
        return result

    result.samples_corrected = _write_corrected(conn, "sample_values", sample_ids, factors)
    result.standards_corrected = _write_corrected(conn, "control_values", standard_ids, factors)

    log.info(
        "Run %s: %d factors, %d sample values and %d standard values corrected",
        run_id,
        len(factors),
        result.samples_corrected,
        result.standards_corrected,
    )
    return result
