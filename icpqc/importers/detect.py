# icpqc/importers/detect.py
"""
Instrument detection and header extraction for uploaded CSV exports.

Major-element exports carry one flat header line starting with "Rack:Tube".
Trace-element exports carry two header lines: the top one holds the "Sample"
caption and one bracketed isotope label per triplet of columns, the second one
holds the column names underneath.
"""

from __future__ import annotations

import csv
import enum
import io
from typing import List, Optional, Sequence

from icpqc.errors import FormatError, ValidationError
from icpqc.headers.schema import CanonicalSchema, InstrumentType, PROFILES, normalize_headers
from icpqc.utils.logging import get_logger

log = get_logger(__name__)

TRIPLET_WIDTH = 3


def read_csv_rows(content: bytes | str) -> List[List[str]]:
    """Decode an upload and split it into CSV rows (a leading BOM is dropped)."""
    if isinstance(content, bytes):
        text = content.decode("utf-8-sig")
    else:
        text = content.lstrip("\ufeff")
    return [row for row in csv.reader(io.StringIO(text, newline=""))]


def is_blank_row(row: Sequence[str]) -> bool:
    return all(not (cell or "").strip() for cell in row)


def detect_instrument(first_row: Sequence[str]) -> InstrumentType:
    """
    Decide the layout from the first header cell.

    Raises:
        FormatError: the first cell is neither of the known markers.
    """
    token = (first_row[0] if first_row else "").strip().strip('"')
    for profile in PROFILES.values():
        if token == profile.marker:
            log.debug("Detected %s export (marker %r)", profile.instrument.value, token)
            return profile.instrument
    raise FormatError("Unrecognized CSV structure", {"first_cell": token})


class ExpanderState(enum.Enum):
    AWAITING_BASE = "awaiting_base"
    EXPANDING_TRIPLET = "expanding_triplet"


class HeaderExpander:
    """
    Merges the two header rows of a trace export into one list of names.

    The machine walks the column pairs (top, sub). In AWAITING_BASE, a top
    cell containing "[" becomes the base of a triplet and the machine switches
    to EXPANDING_TRIPLET, where the next three sub cells each yield
    "<base> <sub>". Any other top cell yields a single header.
    """

    def __init__(self) -> None:
        self.state = ExpanderState.AWAITING_BASE
        self.headers: List[str] = []
        self._base: Optional[str] = None
        self._pending = 0

    def feed(self, top: str, sub: str) -> None:
        top = (top or "").strip()
        sub = (sub or "").strip()

        if self.state is ExpanderState.EXPANDING_TRIPLET:
            self.headers.append(f"{self._base} {sub}".strip())
            self._pending -= 1
            if self._pending == 0:
                self.state = ExpanderState.AWAITING_BASE
                self._base = None
            return

        if "[" in top:
            self._base = top
            self._pending = TRIPLET_WIDTH
            self.state = ExpanderState.EXPANDING_TRIPLET
            self.feed(top, sub)
            return

        # Metadata columns sit under a group caption; the name is on the sub row.
        self.headers.append(sub or top)

    def finish(self) -> List[str]:
        if self.state is ExpanderState.EXPANDING_TRIPLET:
            raise FormatError(
                f"Header group '{self._base}' is missing {self._pending} of its {TRIPLET_WIDTH} sub-columns",
                {"base": self._base},
            )
        return list(self.headers)


def expand_trace_headers(top: Sequence[str], sub: Sequence[str]) -> List[str]:
    expander = HeaderExpander()
    width = len(top)
    while width and not (top[width - 1] or "").strip() and not (
        width - 1 < len(sub) and (sub[width - 1] or "").strip()
    ):
        width -= 1
    for i in range(width):
        expander.feed(top[i], sub[i] if i < len(sub) else "")
    return expander.finish()


def _drop_trailing_empty(cells: Sequence[str]) -> List[str]:
    out = list(cells)
    while out and not (out[-1] or "").strip():
        out.pop()
    return out


def extract_headers(rows: Sequence[Sequence[str]], instrument: InstrumentType) -> List[str]:
    """
    Build the normalized header list for an export.

    Raises:
        FormatError: a trace export lacks its second header row or ends in the
            middle of a triplet.
    """
    if not rows:
        raise FormatError("Unrecognized CSV structure")

    if instrument is InstrumentType.major:
        headers = _drop_trailing_empty(rows[0])
    else:
        if len(rows) < 2:
            raise FormatError("Trace export is missing its second header row")
        headers = expand_trace_headers(rows[0], rows[1])

    headers = normalize_headers(headers)
    log.debug("Extracted %d headers for %s export", len(headers), instrument.value)
    return headers


def validate_headers(headers: Sequence[str], schema: CanonicalSchema) -> None:
    """
    Every header must be known to the schema, otherwise the whole file is
    rejected.
    """
    unmatched = [h for h in headers if not schema.has_header(h)]
    if unmatched:
        log.error("Header validation failed; unmatched: %s", unmatched)
        raise ValidationError("Invalid or mismatched headers", {"unmatched": unmatched})
