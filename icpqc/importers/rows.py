# icpqc/importers/rows.py
"""
Data-row parsing and classification.

Rows are plain dicts keyed by normalized header name. A row is a sample when
its Solution Label starts with "MCS"; everything else is a control row and
must belong to one of the known control categories.
"""

from __future__ import annotations

import re
from typing import Dict, List, Sequence, Tuple

from icpqc.errors import ValidationError
from icpqc.headers.schema import LABEL_COLUMN, CanonicalSchema
from icpqc.importers.detect import is_blank_row
from icpqc.utils.logging import get_logger

log = get_logger(__name__)

Record = Dict[str, str]

HEADER_ROWS = 2
SAMPLE_PREFIX = "MCS"

CONTROL_CATEGORIES: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("Blank", re.compile(r"^Blank$")),
    ("Standard", re.compile(r"^Standard", re.IGNORECASE)),
    ("BLK", re.compile(r"^BLK", re.IGNORECASE)),
    ("QC MES", re.compile(r"^QC MES", re.IGNORECASE)),
    ("SJS-Std", re.compile(r"^SJS-Std$")),
    ("Wash", re.compile(r"^Wash$")),
)


def parse_data_rows(rows: Sequence[Sequence[str]], headers: Sequence[str]) -> List[Record]:
    """
    Key every data row by header position.

    Blank rows are ignored, then the two header rows are skipped. Missing
    trailing cells become "" and every value is trimmed.
    """
    physical = [row for row in rows if not is_blank_row(row)]
    records: List[Record] = []
    for row in physical[HEADER_ROWS:]:
        record = {}
        for i, name in enumerate(headers):
            record[name] = row[i].strip() if i < len(row) and row[i] is not None else ""
        records.append(record)
    log.debug("Parsed %d data rows", len(records))
    return records


def label_of(record: Record) -> str:
    return (record.get(LABEL_COLUMN) or "").strip()


def is_sample(record: Record) -> bool:
    return label_of(record).startswith(SAMPLE_PREFIX)


def split_samples_and_controls(records: Sequence[Record]) -> Tuple[List[Record], List[Record]]:
    samples: List[Record] = []
    controls: List[Record] = []
    for record in records:
        (samples if is_sample(record) else controls).append(record)
    return samples, controls


def control_category(label: str) -> str | None:
    for name, pattern in CONTROL_CATEGORIES:
        if pattern.search(label):
            return name
    return None


def validate_control_labels(controls: Sequence[Record]) -> None:
    """
    Every category must be present at least once and every control label must
    fall into one of them. Rows without a label are ignored.

    Raises:
        ValidationError: message "Missing: ...\\nInvalid: ..." with the
            offending names in `details`.
    """
    found = set()
    invalid: List[str] = []
    for record in controls:
        label = label_of(record)
        if not label:
            continue
        category = control_category(label)
        if category is None:
            invalid.append(label)
        else:
            found.add(category)

    missing = [name for name, _ in CONTROL_CATEGORIES if name not in found]
    if missing or invalid:
        log.error("Control label validation failed: missing=%s invalid=%s", missing, invalid)
        raise ValidationError(
            f"Missing: {', '.join(missing)}\nInvalid: {', '.join(invalid)}",
            {"missing": missing, "invalid": invalid},
        )


def partition_record(record: Record, schema: CanonicalSchema) -> Tuple[Record, Record]:
    """
    Split a row into (primary, auxiliary).

    Metadata columns go to both, reportable columns to primary and everything
    else (intensities, internal standards) to auxiliary.
    """
    primary: Record = {}
    auxiliary: Record = {}
    non_element = set(schema.non_element)
    reportable = set(schema.reportable)
    for key, value in record.items():
        if key in non_element:
            primary[key] = value
            auxiliary[key] = value
        elif key in reportable:
            primary[key] = value
        else:
            auxiliary[key] = value
    return primary, auxiliary
