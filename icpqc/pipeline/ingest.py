# icpqc/pipeline/ingest.py
"""
Ingestion of one instrument export.

Validation happens entirely before anything is written: duplicate filename,
layout detection, header check, row parsing, sample/control split and control
label check. The upload (and optional companion document) is then saved to
the upload directory and all rows are written, and corrected, inside a single
transaction. Files saved along the way are removed again if anything fails.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from icpqc.db import api as db_api
from icpqc.errors import FormatError, IcpqcError, TransactionError, ValidationError
from icpqc.headers.schema import InstrumentType, SchemaRegistry
from icpqc.importers import detect, rows as row_parser
from icpqc.pipeline.correction import apply_corrections
from icpqc.utils.logging import get_logger
from icpqc.utils.paths import upload_path_for

log = get_logger(__name__)


@dataclass(slots=True)
class IngestResult:
    run_id: int
    instrument: InstrumentType
    samples: int
    controls: int
    factors: Dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class ParsedUpload:
    instrument: InstrumentType
    headers: List[str]
    samples: List[Dict[str, str]]
    controls: List[Dict[str, str]]


class Compensations:
    """Undo actions registered while an ingestion is in progress."""

    def __init__(self) -> None:
        self._actions: List[Tuple[str, Callable[[], Any]]] = []

    def add(self, description: str, action: Callable[[], Any]) -> None:
        self._actions.append((description, action))

    def __len__(self) -> int:
        return len(self._actions)

    def run(self) -> None:
        """Run every action, newest first. A failing action does not stop the rest."""
        while self._actions:
            description, action = self._actions.pop()
            try:
                action()
                log.debug("Compensation done: %s", description)
            except OSError as e:
                log.error("Compensation '%s' failed: %s", description, e)

    def clear(self) -> None:
        self._actions.clear()


def _save_file(target: Path, content: bytes, compensations: Compensations) -> Path:
    target.write_bytes(content)
    compensations.add(f"remove {target}", lambda: target.unlink(missing_ok=True))
    return target


def parse_upload(registry: SchemaRegistry, file_bytes: bytes) -> ParsedUpload:
    """
    Run every read-only check on an upload.

    Raises:
        FormatError: unknown layout or malformed header rows.
        ValidationError: header mismatch, no data, or bad control labels.
    """
    all_rows = detect.read_csv_rows(file_bytes)
    physical = [r for r in all_rows if not detect.is_blank_row(r)]
    if not physical:
        raise FormatError("Unrecognized CSV structure")

    instrument = detect.detect_instrument(physical[0])
    schema = registry.for_type(instrument)
    headers = detect.extract_headers(physical, instrument)
    detect.validate_headers(headers, schema)

    records = row_parser.parse_data_rows(physical, headers)
    if not records:
        raise ValidationError("No valid data rows")

    samples, controls = row_parser.split_samples_and_controls(records)
    if not samples or not controls:
        raise ValidationError(
            "Either no samples or no QC rows",
            {"samples": len(samples), "controls": len(controls)},
        )
    row_parser.validate_control_labels(controls)
    return ParsedUpload(instrument=instrument, headers=headers, samples=samples, controls=controls)


def _write_rows(
    conn: sqlite3.Connection,
    run_id: int,
    parsed: ParsedUpload,
    registry: SchemaRegistry,
) -> None:
    schema = registry.for_type(parsed.instrument)
    allowed = schema.headers

    for record in parsed.samples:
        primary, auxiliary = row_parser.partition_record(record, schema)
        sample_id = db_api.upsert_sample(conn, row_parser.label_of(record))
        db_api.upsert_values(conn, "sample_values", sample_id, primary, allowed=allowed)
        db_api.upsert_values(conn, "sample_aux_values", sample_id, auxiliary, allowed=allowed)
        db_api.link_run_sample(conn, run_id, sample_id)

    for index, record in enumerate(parsed.controls):
        control_id = db_api.insert_control_row(conn, run_id, row_parser.label_of(record), index)
        db_api.upsert_values(conn, "control_values", control_id, record, allowed=allowed)


def ingest(
    conn: sqlite3.Connection,
    registry: SchemaRegistry,
    file_bytes: bytes,
    original_name: str,
    upload_dir: Path,
    companion: Optional[Tuple[str, bytes]] = None,
    uploaded_at: Optional[str] = None,
) -> IngestResult:
    """
    Validate, store and correct one export.

    Args:
        file_bytes: Raw CSV content.
        original_name: Name the file was uploaded under; must not match a
            visible run.
        upload_dir: Where the raw upload and companion are kept.
        companion: Optional (name, content) of the accompanying document.
        uploaded_at: Override for the upload timestamp ("YYYY-MM-DD HH:MM:SS").

    Raises:
        FormatError, ValidationError: the upload was rejected; nothing stored.
        TransactionError: writing or correcting failed; nothing stored.
    """
    if db_api.find_active_run_by_filename(conn, original_name) is not None:
        raise ValidationError(
            f"A file named '{original_name}' has already been uploaded",
            {"filename": original_name},
        )

    parsed = parse_upload(registry, file_bytes)
    log.info(
        "Validated '%s': %s export, %d samples, %d control rows",
        original_name,
        parsed.instrument.value,
        len(parsed.samples),
        len(parsed.controls),
    )

    compensations = Compensations()
    try:
        csv_path = _save_file(upload_path_for(upload_dir, original_name), file_bytes, compensations)
        doc_name = doc_path = None
        if companion is not None:
            doc_name = companion[0]
            doc_path = str(_save_file(upload_path_for(upload_dir, doc_name), companion[1], compensations))

        with conn:
            try:
                run_id = db_api.insert_run(
                    conn,
                    filename=original_name,
                    path=str(csv_path),
                    instrument=parsed.instrument.value,
                    doc_name=doc_name,
                    doc_path=doc_path,
                    uploaded_at=uploaded_at,
                )
            except sqlite3.IntegrityError as e:
                raise ValidationError(
                    f"A file named '{original_name}' has already been uploaded",
                    {"filename": original_name},
                ) from e
            _write_rows(conn, run_id, parsed, registry)
            correction = apply_corrections(conn, run_id, registry)

    except (FormatError, ValidationError):
        compensations.run()
        raise
    except Exception as e:
        compensations.run()
        log.exception("Ingestion of '%s' failed: %s", original_name, e)
        if isinstance(e, IcpqcError):
            raise TransactionError(f"Ingestion failed: {e.message}") from e
        raise TransactionError(f"Ingestion failed: {e}") from e

    compensations.clear()
    log.info("Ingested '%s' as run %s", original_name, run_id)
    return IngestResult(
        run_id=run_id,
        instrument=parsed.instrument,
        samples=len(parsed.samples),
        controls=len(parsed.controls),
        factors=dict(correction.factors),
    )


def hide_run(conn: sqlite3.Connection, run_id: int) -> Dict[str, bool]:
    """
    Hide a run from every report and free its filename.

    Raises:
        ValidationError: no visible run with this id.
    """
    if not db_api.mark_run_hidden(conn, run_id):
        raise ValidationError(f"Run {run_id} not found", {"run_id": run_id})
    log.info("Run %s hidden", run_id)
    return {"success": True}


def list_runs(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """Visible runs, newest first, as plain dicts."""
    return [dict(row) for row in db_api.list_runs(conn)]
