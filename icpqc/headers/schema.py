# icpqc/headers/schema.py
"""
Canonical header schemas for the two instrument layouts.

`build_schemas()` is called once at start-up. The resulting `SchemaRegistry` is
immutable and is passed explicitly to the importers, the correction engine and
the reports.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from icpqc.headers import templates
from icpqc.utils.logging import get_logger

log = get_logger(__name__)

CORRECTED_SUFFIX = "_Corrected"
NON_REPORTABLE_MARKERS: Tuple[str, ...] = ("CPS", "ISTD", "C/S", "RATIO")
LABEL_COLUMN = "Solution Label"

_ANALYTE_RE = re.compile(r"(nm\s*ppm|Conc\.)", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


class InstrumentType(str, enum.Enum):
    major = "major"
    trace = "trace"


@dataclass(frozen=True, slots=True)
class InstrumentProfile:
    """Per-instrument constants used by detection, correction and reporting."""

    instrument: InstrumentType
    marker: str
    calibration_label: str
    calibration_target: float
    units: str
    timestamp_column: str
    timestamp_format: str = "%d-%m-%Y %H:%M"


PROFILES: Dict[InstrumentType, InstrumentProfile] = {
    InstrumentType.major: InstrumentProfile(
        instrument=InstrumentType.major,
        marker=templates.MAJOR_MARKER,
        calibration_label="QC MES 5 ppm",
        calibration_target=5.0,
        units="ppm",
        timestamp_column="Timestamp",
    ),
    InstrumentType.trace: InstrumentProfile(
        instrument=InstrumentType.trace,
        marker=templates.TRACE_MARKER,
        calibration_label="QC MES 50 ppb",
        calibration_target=50.0,
        units="ppb",
        timestamp_column="Acq. Date-Time",
    ),
}


# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------

def normalize_header(name: str) -> str:
    """Trim, drop one pair of surrounding quotes and collapse internal whitespace."""
    text = (name or "").strip()
    if text.startswith('"'):
        text = text[1:]
    if text.endswith('"'):
        text = text[:-1]
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_headers(names: Iterable[str]) -> List[str]:
    return [normalize_header(n) for n in names]


def filter_reportable(columns: Iterable[str]) -> List[str]:
    """Drop intensity, internal-standard and ratio columns."""
    kept = []
    for col in columns:
        upper = col.upper()
        if any(marker in upper for marker in NON_REPORTABLE_MARKERS):
            continue
        kept.append(col)
    return kept


def is_analyte(column: str) -> bool:
    return bool(_ANALYTE_RE.search(column))


def companion_name(column: str) -> str:
    return f"{column}{CORRECTED_SUFFIX}"


def with_companions(columns: Iterable[str]) -> List[str]:
    """Insert `<col>_Corrected` right after every analyte column."""
    out: List[str] = []
    for col in columns:
        out.append(col)
        if is_analyte(col):
            out.append(companion_name(col))
    return out


def companion_columns(columns: Iterable[str]) -> List[str]:
    return [companion_name(col) for col in columns if is_analyte(col)]


def element_of(column: str) -> str:
    """
    Element grouping key of an analyte column: its first whitespace token.

    Major columns start with the symbol ("Ca 317.933 nm ppm" -> "Ca"), trace
    columns with the mass ("107 Ag [ He ] ..." -> "107"); both variants of the
    same line therefore share a key.
    """
    parts = column.split()
    return parts[0] if parts else column


def element_symbol(column: str, instrument: InstrumentType) -> str:
    """Chemical symbol of an analyte column, used to look up certificates."""
    parts = column.split()
    if instrument is InstrumentType.trace and len(parts) > 1:
        return parts[1]
    return parts[0] if parts else column


def _is_non_element(column: str, instrument: InstrumentType) -> bool:
    if instrument is InstrumentType.major:
        return "nm" not in column
    return "[" not in column


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CanonicalSchema:
    """
    Normalized header sets for one instrument type.

    headers      every column the instrument may write
    reportable   headers minus intensity / internal-standard / ratio columns
    non_element  sample metadata columns (label, type, timestamp ...)
    analytes     concentration columns within reportable
    corrected    `<analyte>_Corrected`, same order as analytes
    complete     reportable with each companion placed after its analyte
    """

    instrument: InstrumentType
    headers: Tuple[str, ...]
    reportable: Tuple[str, ...]
    non_element: Tuple[str, ...]
    analytes: Tuple[str, ...]
    corrected: Tuple[str, ...]
    complete: Tuple[str, ...]

    @property
    def profile(self) -> InstrumentProfile:
        return PROFILES[self.instrument]

    def has_header(self, name: str) -> bool:
        return name in self.headers


def build_schema(instrument: InstrumentType, raw_headers: Sequence[str]) -> CanonicalSchema:
    headers = normalize_headers(raw_headers)
    reportable = filter_reportable(headers)
    non_element = [h for h in headers if _is_non_element(h, instrument)]
    analytes = [h for h in reportable if is_analyte(h)]
    return CanonicalSchema(
        instrument=instrument,
        headers=tuple(headers),
        reportable=tuple(reportable),
        non_element=tuple(non_element),
        analytes=tuple(analytes),
        corrected=tuple(companion_columns(reportable)),
        complete=tuple(with_companions(reportable)),
    )


@dataclass(frozen=True, slots=True)
class SchemaRegistry:
    major: CanonicalSchema
    trace: CanonicalSchema
    reference_columns: Tuple[str, ...]

    def for_type(self, instrument: InstrumentType | str) -> CanonicalSchema:
        return self.major if InstrumentType(instrument) is InstrumentType.major else self.trace

    def schemas(self) -> Tuple[CanonicalSchema, CanonicalSchema]:
        return (self.major, self.trace)

    def instrument_of(self, analyte: str) -> Optional[InstrumentType]:
        """Which instrument reports a given analyte column, if any."""
        for schema in self.schemas():
            if analyte in schema.analytes:
                return schema.instrument
        return None


def build_schemas() -> SchemaRegistry:
    major = build_schema(InstrumentType.major, templates.MAJOR_RAW_HEADERS)
    trace = build_schema(InstrumentType.trace, templates.TRACE_RAW_HEADERS)

    reference: List[str] = []
    seen = set()
    for col in list(major.analytes) + list(trace.analytes):
        if col not in seen:
            seen.add(col)
            reference.append(col)

    log.debug(
        "Built schemas: major=%d headers (%d analytes), trace=%d headers (%d analytes)",
        len(major.headers),
        len(major.analytes),
        len(trace.headers),
        len(trace.analytes),
    )
    return SchemaRegistry(major=major, trace=trace, reference_columns=tuple(reference))


def reference_certificate(
    registry: SchemaRegistry,
) -> Dict[str, Tuple[Optional[float], Optional[float]]]:
    """
    (certified value, error bound) of the secondary standard for every
    reference column, expanded from the per-element certificates.
    """
    certificates = {
        InstrumentType.major: templates.MAJOR_SJS_CERTIFICATE,
        InstrumentType.trace: templates.TRACE_SJS_CERTIFICATE,
    }
    out: Dict[str, Tuple[Optional[float], Optional[float]]] = {}
    for schema in registry.schemas():
        cert = certificates[schema.instrument]
        for col in schema.analytes:
            if col in out:
                continue
            out[col] = cert.get(element_symbol(col, schema.instrument), (None, None))
    return out
