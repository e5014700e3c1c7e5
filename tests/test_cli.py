import sqlite3
from pathlib import Path

import pandas as pd
import yaml

from icpqc.cli import app


def _write_config(base_dir: Path) -> Path:
    """A minimal config rooting the store and logs under base_dir/outputs."""
    output_dir = base_dir / "outputs"
    cfg = {
        "run": {"output_dir": str(output_dir)},
        "store": {"upload_dir": str(output_dir / "raw")},
    }
    cfg_path = base_dir / "icpqc.yaml"
    cfg_path.write_text(yaml.safe_dump(cfg))
    return cfg_path


def _write_export(base_dir: Path, name: str, content: bytes) -> Path:
    path = base_dir / name
    path.write_bytes(content)
    return path


def test_cli_help_lists_commands(cli_runner):
    result = cli_runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "Usage" in result.stdout
    for command in ("init", "ingest", "ls", "hide", "recorrect", "table", "summary", "detail", "dashboard"):
        assert command in result.stdout


def test_cli_init_with_config_creates_store_and_logs(cli_runner, tmp_path):
    cfg_path = _write_config(tmp_path)
    result = cli_runner.invoke(app, ["-c", str(cfg_path), "init"])
    assert result.exit_code == 0, result.stdout

    db_path = tmp_path / "outputs" / "icpqc.sqlite"
    assert db_path.is_file()
    assert (tmp_path / "outputs" / "raw").is_dir()
    assert (tmp_path / "outputs" / "run_logs").is_dir()

    conn = sqlite3.connect(db_path)
    try:
        count = conn.execute("SELECT COUNT(*) FROM reference_standards").fetchone()[0]
        assert count > 0
    finally:
        conn.close()


def test_cli_ingest_and_report(cli_runner, tmp_path, make_major):
    db_path = tmp_path / "qc.sqlite"
    csv_path = _write_export(tmp_path, "major.csv", make_major())

    result = cli_runner.invoke(app, ["--db", str(db_path), "ingest", str(csv_path)])
    assert result.exit_code == 0, result.stdout
    assert "Run 1" in result.stdout

    result = cli_runner.invoke(app, ["--db", str(db_path), "summary", "--run", "1"])
    assert result.exit_code == 0, result.stdout
    assert "Within tolerance:" in result.stdout

    out_csv = tmp_path / "table.csv"
    result = cli_runner.invoke(
        app, ["--db", str(db_path), "table", "--run", "1", "--check", "secondary", "--out", str(out_csv)]
    )
    assert result.exit_code == 0, result.stdout
    frame = pd.read_csv(out_csv)
    assert "Al 237.312 nm ppm" in set(frame["full_name"])
    assert set(frame["status"]) <= {"Pass", "Fail", "N/A"}

    detail_csv = tmp_path / "detail.csv"
    result = cli_runner.invoke(
        app,
        ["--db", str(db_path), "detail", "Al 237.312 nm ppm", "--run", "1", "--page-size", "1", "--out", str(detail_csv)],
    )
    assert result.exit_code == 0, result.stdout
    assert len(pd.read_csv(detail_csv)) == 1

    for args in (["ls"], ["dashboard"], ["recorrect", "1"], ["values", "Al 237.312 nm ppm", "--run", "1"]):
        result = cli_runner.invoke(app, ["--db", str(db_path), *args])
        assert result.exit_code == 0, (args, result.stdout)


def test_cli_duplicate_and_hide(cli_runner, tmp_path, make_major):
    db_path = tmp_path / "qc.sqlite"
    csv_path = _write_export(tmp_path, "major.csv", make_major())

    assert cli_runner.invoke(app, ["--db", str(db_path), "ingest", str(csv_path)]).exit_code == 0
    assert cli_runner.invoke(app, ["--db", str(db_path), "ingest", str(csv_path)]).exit_code == 1

    assert cli_runner.invoke(app, ["--db", str(db_path), "hide", "1"]).exit_code == 0
    assert cli_runner.invoke(app, ["--db", str(db_path), "ingest", str(csv_path)]).exit_code == 0
    assert cli_runner.invoke(app, ["--db", str(db_path), "hide", "1"]).exit_code == 1


def test_cli_rejects_unknown_layout(cli_runner, tmp_path):
    db_path = tmp_path / "qc.sqlite"
    csv_path = _write_export(tmp_path, "bad.csv", b"Name,Value\nfoo,1\n")
    result = cli_runner.invoke(app, ["--db", str(db_path), "ingest", str(csv_path)])
    assert result.exit_code == 1


def test_cli_report_needs_a_scope(cli_runner, tmp_path):
    db_path = tmp_path / "qc.sqlite"
    result = cli_runner.invoke(app, ["--db", str(db_path), "summary"])
    assert result.exit_code == 1
    result = cli_runner.invoke(app, ["--db", str(db_path), "summary", "--start", "2025-01-01", "--end", "2025-01-31"])
    assert result.exit_code == 0, result.stdout


def test_cli_unknown_check_errors(cli_runner, tmp_path):
    result = cli_runner.invoke(app, ["summary", "--run", "1", "--check", "bogus"])
    assert result.exit_code != 0
