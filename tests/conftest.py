import csv
import io
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import pytest
from typer.testing import CliRunner

from icpqc.db import api as db_api
from icpqc.headers import templates
from icpqc.headers.schema import build_schemas, normalize_header, reference_certificate

Row = Tuple[str, Mapping[str, Any]]


@pytest.fixture
def cli_runner():
    """Reusable Typer CLI runner with stderr merged into stdout for assertions."""
    return CliRunner()


@pytest.fixture
def registry():
    return build_schemas()


@pytest.fixture
def conn(tmp_path, registry):
    connection = db_api.connect(tmp_path / "qc.sqlite")
    db_api.init_schema(connection)
    db_api.seed_reference_standards(connection, reference_certificate(registry))
    yield connection
    connection.close()


def _to_bytes(rows: Sequence[Sequence[str]]) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(rows)
    return buf.getvalue().encode("utf-8")


def _cell(name: str, values: Mapping[str, Any], default: Any, is_conc: bool, filler: str) -> str:
    if name in values:
        return "" if values[name] is None else str(values[name])
    if is_conc:
        return str(values.get("*", default))
    return filler


def major_export(rows: Sequence[Row], default: Any = "1.0") -> bytes:
    """
    A major-element export. `rows` are (label, values) pairs; values are keyed
    by normalized column name, with "*" standing for every ppm column.
    """
    names = [normalize_header(h) for h in templates.MAJOR_RAW_HEADERS]
    units = ["" if "nm" not in n else ("ppm" if n.endswith("ppm") else "c/s") for n in names]
    out: List[List[str]] = [list(templates.MAJOR_RAW_HEADERS), units]
    for i, (label, values) in enumerate(rows):
        meta = {
            "Rack:Tube": f"1:{i + 1}",
            "Solution Label": label,
            "Type": "Sample" if label.startswith("MCS") else "QC",
            "Timestamp": f"15-01-2025 10:{i:02d}",
            "Dilution": "1",
        }
        line = []
        for name in names:
            if name in meta and name not in values:
                line.append(meta[name])
            else:
                line.append(_cell(name, values, default, name.endswith("nm ppm"), "1000"))
        out.append(line)
    return _to_bytes(out)


def trace_export(rows: Sequence[Row], default: Any = "10.0") -> bytes:
    """A trace-element export with the two vendor header rows."""
    top, sub = templates.trace_header_rows()
    names = [normalize_header(h) for h in templates.TRACE_RAW_HEADERS]
    out: List[List[str]] = [top, sub]
    for i, (label, values) in enumerate(rows):
        meta = {
            "Data File": f"{i + 1:03d}SMPL.d",
            "Acq. Date-Time": f"15-01-2025 11:{i:02d}",
            "Type": "Sample" if label.startswith("MCS") else "QC",
            "Solution Label": label,
        }
        line = []
        for name in names:
            if name in meta and name not in values:
                line.append(meta[name])
            elif name.endswith("CPS"):
                line.append(_cell(name, values, default, False, "5000"))
            else:
                line.append(_cell(name, values, default, "Conc." in name, "98.5"))
        out.append(line)
    return _to_bytes(out)


def standard_rows(
    calibration_label: str,
    qc_value: Any,
    sjs_value: Any,
    sample_value: Any,
    samples: Sequence[str] = ("MCS-001", "MCS-002"),
    qc_overrides: Mapping[str, Any] = None,
) -> List[Row]:
    """Every required control category once (calibration twice) plus samples."""
    qc_values: Dict[str, Any] = {"*": qc_value}
    qc_values.update(qc_overrides or {})
    rows: List[Row] = [
        ("Blank", {"*": "0.0"}),
        ("Standard 1", {"*": "1.0"}),
        ("BLK 1", {"*": "0.01"}),
        (calibration_label, qc_values),
        (calibration_label, qc_values),
        ("SJS-Std", {"*": sjs_value}),
        ("Wash", {"*": "0.0"}),
    ]
    rows.extend((label, {"*": sample_value}) for label in samples)
    return rows


@pytest.fixture
def make_major():
    def _make(qc_value="4.55", sjs_value="1.9", sample_value="4.0", **kwargs) -> bytes:
        return major_export(standard_rows("QC MES 5 ppm", qc_value, sjs_value, sample_value, **kwargs))
    return _make


@pytest.fixture
def make_trace():
    def _make(qc_value="50.0", sjs_value="10.0", sample_value="20.0", **kwargs) -> bytes:
        return trace_export(standard_rows("QC MES 50 ppb", qc_value, sjs_value, sample_value, **kwargs))
    return _make


@pytest.fixture
def export_builders():
    """Low-level builders for tests that need unusual rows."""
    return {"major": major_export, "trace": trace_export, "rows": standard_rows}
