import pytest

from icpqc.utils.config import load_config, resolve_store_paths
from icpqc.utils.hashing import config_hash
from icpqc.utils.logging import get_logger, setup_logger
from icpqc.utils.paths import run_log_path, safe_filename, upload_path_for


def test_load_config_reads_yaml(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "run:\n"
        "  output_dir: ./out\n"
        "store:\n"
        "  db: ./out/qc.sqlite\n"
    )

    data = load_config(cfg_path)
    assert data["run"]["output_dir"] == "./out"
    assert data["store"]["db"] == "./out/qc.sqlite"


def test_load_config_empty_and_invalid(tmp_path):
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_config(empty) == {}

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(listing)


def test_resolve_store_paths_defaults_and_overrides(tmp_path):
    cfg = {"run": {"output_dir": str(tmp_path / "out")}}
    db_path, upload_dir = resolve_store_paths(cfg)
    assert db_path == (tmp_path / "out").resolve() / "icpqc.sqlite"
    assert upload_dir == db_path.resolve().parent / "uploads"

    cfg["store"] = {"db": str(tmp_path / "x.sqlite"), "upload_dir": str(tmp_path / "raw")}
    db_path, upload_dir = resolve_store_paths(cfg)
    assert db_path == tmp_path / "x.sqlite"
    assert upload_dir == tmp_path / "raw"

    db_path, _ = resolve_store_paths(cfg, db_override=tmp_path / "cli.sqlite")
    assert db_path == tmp_path / "cli.sqlite"


def test_config_hash_is_order_independent():
    a = {"run": {"output_dir": "x"}, "store": {"db": "y"}}
    b = {"store": {"db": "y"}, "run": {"output_dir": "x"}}
    assert config_hash(a) == config_hash(b)
    assert len(config_hash(a)) == 7
    assert config_hash(a) != config_hash({"run": {"output_dir": "z"}})


def test_upload_paths_are_unique(tmp_path):
    upload_dir = tmp_path / "uploads"
    first = upload_path_for(upload_dir, "../QC run 1.csv", suffix="20250115")
    first.write_text("x")
    second = upload_path_for(upload_dir, "../QC run 1.csv", suffix="20250115")
    assert first.parent == upload_dir
    assert first.name == "20250115__QC_run_1.csv"
    assert second != first
    assert safe_filename("///") == "upload"


def test_run_log_path(tmp_path):
    path = run_log_path(tmp_path, "abc1234")
    assert path.parent == tmp_path / "run_logs"
    assert path.parent.is_dir()
    assert path.name.endswith("__cfg-abc1234.log")


def test_setup_logger_creates_file(tmp_path):
    log_path = tmp_path / "icpqc.log"
    logger = setup_logger(logfile=log_path, verbose=True)
    child = get_logger("icpqc.tests")

    child.debug("debug message")
    child.info("info message")

    for handler in logger.handlers:
        flush = getattr(handler, "flush", None)
        if callable(flush):
            flush()

    assert log_path.is_file()
    contents = log_path.read_text()
    assert "info message" in contents


def test_config_hash_of_missing_config_and_paths(tmp_path):
    assert config_hash(None) == config_hash({})
    assert config_hash({"store": {"db": tmp_path}}) == config_hash({"store": {"db": str(tmp_path)}})


def test_setup_logger_swaps_run_log(tmp_path):
    first, second = tmp_path / "first.log", tmp_path / "second.log"
    setup_logger(logfile=first)
    logger = setup_logger(logfile=second)
    get_logger("icpqc.tests").info("after swap")
    for handler in logger.handlers:
        handler.flush()

    assert len(logger.handlers) == 2
    assert "after swap" in second.read_text()
    assert "after swap" not in first.read_text()
