import pytest

from icpqc.db import api as db_api
from icpqc.errors import ValidationError
from icpqc.pipeline.correction import apply_corrections, correction_factor
from icpqc.pipeline.ingest import ingest

AL = "Al 237.312 nm ppm"
AL_CORR = "Al 237.312 nm ppm_Corrected"


def _sample_value(conn, label, column):
    sample_id = db_api.get_sample_id(conn, label)
    return db_api.fetch_values(conn, "sample_values", sample_id)[column]["value_num"]


def _sjs_values(conn, run_id, column):
    out = []
    for control_id in db_api.control_row_ids(conn, run_id, "SJS-Std"):
        out.append(db_api.fetch_values(conn, "control_values", control_id)[column]["value_num"])
    return out


def test_correction_factor():
    assert correction_factor(4.55, 5.0) == pytest.approx(0.09)
    assert correction_factor(None, 5.0) is None
    assert correction_factor(4.55, 0) is None


def test_ingest_applies_factors(conn, registry, tmp_path, make_major):
    result = ingest(conn, registry, make_major(), "run.csv", tmp_path / "uploads")
    assert result.factors[AL] == pytest.approx(0.09)
    assert set(result.factors) == set(registry.major.analytes)
    assert _sample_value(conn, "MCS-001", AL_CORR) == pytest.approx(4.36)
    assert _sjs_values(conn, result.run_id, AL_CORR) == [pytest.approx(1.9 * 1.09)]


def test_corrections_are_idempotent(conn, registry, tmp_path, make_major):
    result = ingest(conn, registry, make_major(), "run.csv", tmp_path / "uploads")
    first = _sample_value(conn, "MCS-002", AL_CORR)
    with conn:
        again = apply_corrections(conn, result.run_id, registry)
    with conn:
        apply_corrections(conn, result.run_id, registry)
    assert _sample_value(conn, "MCS-002", AL_CORR) == pytest.approx(first)
    assert _sjs_values(conn, result.run_id, AL_CORR) == [pytest.approx(1.9 * 1.09)]
    assert again.factors == result.factors
    assert again.samples_corrected == 2 * len(registry.major.analytes)
    assert again.standards_corrected == len(registry.major.analytes)


def test_missing_calibration_values_skip_the_analyte(conn, registry, tmp_path, make_major):
    data = make_major(qc_overrides={AL: ""})
    result = ingest(conn, registry, data, "run.csv", tmp_path / "uploads")
    assert AL not in result.factors
    sample_id = db_api.get_sample_id(conn, "MCS-001")
    assert AL_CORR not in db_api.fetch_values(conn, "sample_values", sample_id)
    assert "Ca 317.933 nm ppm_Corrected" in db_api.fetch_values(conn, "sample_values", sample_id)


def test_non_numeric_raw_value_is_left_alone(conn, registry, tmp_path, export_builders):
    rows = export_builders["rows"]("QC MES 5 ppm", "4.55", "1.9", "4.0")
    rows.append(("MCS-003", {"*": "4.0", AL: "<LOD"}))
    result = ingest(conn, registry, export_builders["major"](rows), "run.csv", tmp_path / "uploads")
    assert AL in result.factors
    sample_id = db_api.get_sample_id(conn, "MCS-003")
    values = db_api.fetch_values(conn, "sample_values", sample_id)
    assert values[AL]["value_text"] == "<LOD"
    assert values[AL]["value_num"] is None
    assert AL_CORR not in values


def test_trace_run_uses_ppb_target(conn, registry, tmp_path, make_trace):
    result = ingest(conn, registry, make_trace(qc_value="45.0"), "trace.csv", tmp_path / "uploads")
    column = "107 Ag [ He ] Conc. [ ppb ]"
    assert result.factors[column] == pytest.approx(0.1)
    assert _sample_value(conn, "MCS-001", column + "_Corrected") == pytest.approx(22.0)


def test_unknown_run(conn, registry):
    with pytest.raises(ValidationError):
        apply_corrections(conn, 999, registry)


def test_later_run_clears_corrected_value_it_cannot_recompute(conn, registry, tmp_path, export_builders):
    build_rows, build_major = export_builders["rows"], export_builders["major"]
    ingest(conn, registry, build_major(build_rows("QC MES 5 ppm", "4.55", "1.9", "4.0")), "first.csv", tmp_path / "uploads")
    assert _sample_value(conn, "MCS-001", AL_CORR) == pytest.approx(4.36)

    rows = build_rows("QC MES 5 ppm", "4.55", "1.9", "4.0", samples=("MCS-002",))
    rows.append(("MCS-001", {"*": "4.0", AL: "<LOD"}))
    ingest(conn, registry, build_major(rows), "second.csv", tmp_path / "uploads")

    values = db_api.fetch_values(conn, "sample_values", db_api.get_sample_id(conn, "MCS-001"))
    assert values[AL]["value_text"] == "<LOD"
    assert AL_CORR not in values
    assert values["Ca 317.933 nm ppm_Corrected"]["value_num"] == pytest.approx(4.36)


def test_run_without_factors_clears_old_corrected_values(conn, registry, tmp_path, export_builders):
    build_rows, build_major = export_builders["rows"], export_builders["major"]
    ingest(conn, registry, build_major(build_rows("QC MES 5 ppm", "4.55", "1.9", "4.0")), "first.csv", tmp_path / "uploads")

    result = ingest(conn, registry, build_major(build_rows("QC MES 5 ppm", "", "1.9", "5.0")), "second.csv", tmp_path / "uploads")
    assert result.factors == {}
    values = db_api.fetch_values(conn, "sample_values", db_api.get_sample_id(conn, "MCS-001"))
    assert values[AL]["value_num"] == pytest.approx(5.0)
    assert AL_CORR not in values
