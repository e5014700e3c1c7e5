from icpqc.headers import templates
from icpqc.headers.schema import (
    InstrumentType,
    build_schemas,
    companion_columns,
    element_of,
    element_symbol,
    filter_reportable,
    is_analyte,
    normalize_header,
    reference_certificate,
    with_companions,
)


def test_normalize_header_strips_quotes_and_whitespace():
    assert normalize_header('  "Solution Label" ') == "Solution Label"
    assert normalize_header("Al 237.312 nm  ppm") == "Al 237.312 nm ppm"
    assert normalize_header("Acq.\t Date-Time") == "Acq. Date-Time"


def test_filter_reportable_drops_intensity_and_istd_columns():
    cols = ["Solution Label", "Al 237.312 nm ppm", "Al 237.312 nm C/S", "7 Li [ No Gas ] CPS",
            "7 Li [ No Gas ] ISTD Recovery %", "Y 371.029 nm (ISTD) ratio"]
    assert filter_reportable(cols) == ["Solution Label", "Al 237.312 nm ppm"]


def test_is_analyte_matches_both_layouts():
    assert is_analyte("Ca 317.933 nm ppm")
    assert is_analyte("Ca 317.933 nmppm")
    assert is_analyte("107 Ag [ He ] Conc. [ ppb ]")
    assert is_analyte("107 Ag [ He ] conc. [ ppb ]")
    assert not is_analyte("Solution Label")
    assert not is_analyte("107 Ag [ He ] CPS")


def test_companions_follow_their_analyte():
    cols = ["Solution Label", "Al 237.312 nm ppm", "Type", "Ca 317.933 nm ppm"]
    assert with_companions(cols) == [
        "Solution Label",
        "Al 237.312 nm ppm",
        "Al 237.312 nm ppm_Corrected",
        "Type",
        "Ca 317.933 nm ppm",
        "Ca 317.933 nm ppm_Corrected",
    ]
    assert companion_columns(cols) == ["Al 237.312 nm ppm_Corrected", "Ca 317.933 nm ppm_Corrected"]


def test_schemas_have_one_companion_per_analyte():
    registry = build_schemas()
    for schema in registry.schemas():
        assert len(schema.corrected) == len(schema.analytes)
        assert list(schema.corrected) == [f"{a}_Corrected" for a in schema.analytes]
        complete = list(schema.complete)
        for analyte in schema.analytes:
            assert complete[complete.index(analyte) + 1] == f"{analyte}_Corrected"
        assert len(complete) == len(schema.reportable) + len(schema.analytes)


def test_major_schema_sets():
    major = build_schemas().major
    assert major.instrument is InstrumentType.major
    assert major.non_element == ("Rack:Tube", "Solution Label", "Type", "Timestamp", "Dilution")
    assert "Al 237.312 nm ppm" in major.analytes
    assert "Y 371.029 nm (ISTD) ratio" in major.headers
    assert "Y 371.029 nm (ISTD) ratio" not in major.reportable
    assert all("C/S" not in c for c in major.reportable)
    assert major.profile.calibration_label == "QC MES 5 ppm"


def test_trace_schema_sets():
    trace = build_schemas().trace
    assert trace.non_element == ("Data File", "Acq. Date-Time", "Type", "Solution Label")
    assert "107 Ag [ He ] Conc. [ ppb ]" in trace.analytes
    assert "107 Ag [ He ] CPS" in trace.headers
    assert "107 Ag [ He ] CPS" not in trace.reportable
    assert len(trace.analytes) == len(templates.trace_isotopes())
    assert trace.profile.timestamp_column == "Acq. Date-Time"


def test_reference_columns_are_unique_union_in_order():
    registry = build_schemas()
    expected = list(registry.major.analytes) + [a for a in registry.trace.analytes if a not in registry.major.analytes]
    assert list(registry.reference_columns) == expected
    assert len(set(registry.reference_columns)) == len(registry.reference_columns)


def test_registry_lookup_by_analyte():
    registry = build_schemas()
    assert registry.instrument_of("Ca 317.933 nm ppm") is InstrumentType.major
    assert registry.instrument_of("208 Pb [ He ] Conc. [ ppb ]") is InstrumentType.trace
    assert registry.instrument_of("Solution Label") is None
    assert registry.for_type("trace") is registry.trace


def test_element_keys():
    assert element_of("Al 396.152 nm ppm") == "Al"
    assert element_of("107 Ag [ No Gas ] Conc. [ ppb ]") == "107"
    assert element_symbol("107 Ag [ He ] Conc. [ ppb ]", InstrumentType.trace) == "Ag"
    assert element_symbol("Al 396.152 nm ppm", InstrumentType.major) == "Al"


def test_reference_certificate_expands_per_line():
    registry = build_schemas()
    cert = reference_certificate(registry)
    assert set(cert) == set(registry.reference_columns)
    assert cert["Al 237.312 nm ppm"] == cert["Al 396.152 nm ppm"] == (2.0, 0.2)
    assert cert["Si 251.611 nm ppm"] == (None, None)
    assert cert["118 Sn [ He ] Conc. [ ppb ]"] == (0.0, 0.0)
