# icpqc/db/api.py
"""
This module provides a minimal, stateless API for database interactions:
run bookkeeping, tall value tables and the aggregate queries used by the
correction engine and the QC reports.

Write helpers do not open their own transaction; ingestion wraps them in a
single `with conn:` block so a failure leaves nothing behind.
"""

import math
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from icpqc.db.schema import ALL_TABLES, ALL_INDEXES
from icpqc.utils.logging import get_logger

log = get_logger(__name__)

REFERENCE_LABEL = "SJS-Std"
ERROR_LABEL = "Error"

# value table -> owner column
_VALUE_TABLES: Dict[str, str] = {
    "sample_values": "sample_id",
    "sample_aux_values": "sample_id",
    "control_values": "control_id",
}


def _owner_column(table: str) -> str:
    try:
        return _VALUE_TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown value table: {table}") from None


def _placeholders(items: Sequence[Any]) -> str:
    return ", ".join("?" for _ in items)


def parse_numeric(text: Optional[str]) -> Optional[float]:
    """float(text) when the cell holds a finite number, else None."""
    if text is None:
        return None
    stripped = str(text).strip()
    if not stripped:
        return None
    try:
        value = float(stripped)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def connect(db_path: Path) -> sqlite3.Connection:
    """
    Establishes a connection to the SQLite database.

    Args:
        db_path: The file path to the SQLite database.

    Returns:
        A sqlite3.Connection object.
    """
    try:
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        # Ensure FK constraints (including ON DELETE CASCADE) are enforced
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        log.debug("Database connection established to %s", db_path)
        return conn
    except sqlite3.Error as e:
        log.exception("Database connection failed: %s", e)
        raise


def init_schema(conn: sqlite3.Connection):
    """
    Initializes the database schema by creating all tables and indexes.

    Args:
        conn: An active sqlite3.Connection object.
    """
    try:
        with conn:
            for table_sql in ALL_TABLES:
                conn.execute(table_sql)
            for index_sql in ALL_INDEXES:
                conn.execute(index_sql)
        log.info("Database schema initialized successfully.")
    except sqlite3.Error as e:
        log.exception("Schema initialization failed: %s", e)
        raise


def seed_reference_standards(
    conn: sqlite3.Connection,
    certificate: Mapping[str, Tuple[Optional[float], Optional[float]]],
) -> int:
    """
    Insert the secondary-standard certificate once. Existing rows are left
    untouched so edited certificate values survive a re-seed.

    Returns:
        Number of rows inserted.
    """
    rows = []
    for column, (certified, error) in certificate.items():
        rows.append((REFERENCE_LABEL, column, certified))
        rows.append((ERROR_LABEL, column, error))
    try:
        with conn:
            before = conn.total_changes
            conn.executemany(
                "INSERT OR IGNORE INTO reference_standards (row_label, column_name, value_num) VALUES (?, ?, ?)",
                rows,
            )
            inserted = conn.total_changes - before
        log.debug("Seeded %d reference standard values", inserted)
        return inserted
    except sqlite3.Error as e:
        log.exception("Seeding reference standards failed: %s", e)
        raise


def fetch_reference_values(conn: sqlite3.Connection) -> Dict[str, Dict[str, Optional[float]]]:
    """Returns {row_label: {column_name: value}} for the reference table."""
    out: Dict[str, Dict[str, Optional[float]]] = {REFERENCE_LABEL: {}, ERROR_LABEL: {}}
    for row in conn.execute("SELECT row_label, column_name, value_num FROM reference_standards"):
        out.setdefault(row["row_label"], {})[row["column_name"]] = row["value_num"]
    return out


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

def find_active_run_by_filename(conn: sqlite3.Connection, filename: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM uploaded_runs WHERE filename = ? AND hidden = 0",
        (filename,),
    ).fetchone()


def insert_run(
    conn: sqlite3.Connection,
    filename: str,
    path: str,
    instrument: str,
    doc_name: Optional[str] = None,
    doc_path: Optional[str] = None,
    uploaded_at: Optional[str] = None,
) -> int:
    """
    Records a new uploaded run. Runs inside the caller's transaction.

    Raises:
        sqlite3.IntegrityError: a visible run with the same filename exists.
    """
    if uploaded_at is None:
        cursor = conn.execute(
            """
            INSERT INTO uploaded_runs (filename, path, doc_name, doc_path, instrument)
            VALUES (?, ?, ?, ?, ?)
            """,
            (filename, path, doc_name, doc_path, instrument),
        )
    else:
        cursor = conn.execute(
            """
            INSERT INTO uploaded_runs (filename, path, doc_name, doc_path, instrument, uploaded_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (filename, path, doc_name, doc_path, instrument, uploaded_at),
        )
    run_id = cursor.lastrowid
    log.debug("Inserted run %s (%s, %s)", run_id, filename, instrument)
    return run_id


def get_run(conn: sqlite3.Connection, run_id: int) -> Optional[sqlite3.Row]:
    return conn.execute("SELECT * FROM uploaded_runs WHERE id = ?", (run_id,)).fetchone()


def list_runs(conn: sqlite3.Connection, include_hidden: bool = False) -> List[sqlite3.Row]:
    """Visible runs, newest first."""
    where = "" if include_hidden else "WHERE hidden = 0"
    return conn.execute(
        f"""
        SELECT r.*,
               (SELECT COUNT(*) FROM run_samples rs WHERE rs.run_id = r.id) AS n_samples,
               (SELECT COUNT(*) FROM control_rows cr WHERE cr.run_id = r.id) AS n_controls
        FROM uploaded_runs r
        {where}
        ORDER BY r.uploaded_at DESC, r.id DESC
        """
    ).fetchall()


def mark_run_hidden(conn: sqlite3.Connection, run_id: int) -> bool:
    """
    Hides a run and frees its filename for re-upload.

    Returns:
        True when a visible run was hidden.
    """
    try:
        with conn:
            cursor = conn.execute(
                """
                UPDATE uploaded_runs
                SET hidden = 1, filename = filename || '_deleted'
                WHERE id = ? AND hidden = 0
                """,
                (run_id,),
            )
        return cursor.rowcount > 0
    except sqlite3.Error as e:
        log.exception("Failed to hide run %s: %s", run_id, e)
        raise


def select_run_ids(
    conn: sqlite3.Connection,
    start: str,
    end: str,
    instrument: Optional[str] = None,
) -> List[int]:
    """
    Visible runs uploaded between two dates (YYYY-MM-DD), both days inclusive.
    """
    sql = """
        SELECT id FROM uploaded_runs
        WHERE hidden = 0 AND date(uploaded_at) BETWEEN ? AND ?
    """
    params: List[Any] = [start, end]
    if instrument is not None:
        sql += " AND instrument = ?"
        params.append(instrument)
    sql += " ORDER BY uploaded_at, id"
    return [row["id"] for row in conn.execute(sql, params)]


def count_active_runs(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM uploaded_runs WHERE hidden = 0").fetchone()[0]


def count_samples(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM sample_records").fetchone()[0]


def runs_uploaded_since(conn: sqlite3.Connection, since: str) -> List[sqlite3.Row]:
    return conn.execute(
        """
        SELECT * FROM uploaded_runs
        WHERE hidden = 0 AND uploaded_at >= ?
        ORDER BY uploaded_at, id
        """,
        (since,),
    ).fetchall()


# ---------------------------------------------------------------------------
# Samples and control rows
# ---------------------------------------------------------------------------

def upsert_sample(conn: sqlite3.Connection, solution_label: str) -> int:
    """Returns the id of the sample with this label, creating it on first sight."""
    conn.execute(
        "INSERT INTO sample_records (solution_label) VALUES (?) ON CONFLICT(solution_label) DO NOTHING",
        (solution_label,),
    )
    row = conn.execute(
        "SELECT id FROM sample_records WHERE solution_label = ?", (solution_label,)
    ).fetchone()
    return row["id"]


def link_run_sample(conn: sqlite3.Connection, run_id: int, sample_id: int) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO run_samples (run_id, sample_id) VALUES (?, ?)",
        (run_id, sample_id),
    )


def insert_control_row(conn: sqlite3.Connection, run_id: int, solution_label: str, row_index: int) -> int:
    cursor = conn.execute(
        "INSERT INTO control_rows (run_id, solution_label, row_index) VALUES (?, ?, ?)",
        (run_id, solution_label, row_index),
    )
    return cursor.lastrowid


def upsert_values(
    conn: sqlite3.Connection,
    table: str,
    owner_id: int,
    values: Mapping[str, Optional[str]],
    allowed: Optional[Iterable[str]] = None,
) -> int:
    """
    Writes (column_name, value) pairs for one owner into a tall value table.
    A column seen again for the same owner is overwritten.

    Args:
        table: sample_values, sample_aux_values or control_values.
        allowed: when given, every column name must be in this set.

    Returns:
        Number of values written.
    """
    owner = _owner_column(table)
    if allowed is not None:
        allowed_set = set(allowed)
        unknown = [c for c in values if c not in allowed_set]
        if unknown:
            raise ValueError(f"Columns not in schema for {table}: {unknown}")

    rows = []
    for column, text in values.items():
        text = "" if text is None else str(text)
        rows.append((owner_id, column, text, parse_numeric(text)))
    conn.executemany(
        f"""
        INSERT INTO {table} ({owner}, column_name, value_text, value_num)
        VALUES (?, ?, ?, ?)
        ON CONFLICT({owner}, column_name) DO UPDATE SET
            value_text = excluded.value_text,
            value_num = excluded.value_num
        """,
        rows,
    )
    return len(rows)


def set_numeric_value(conn: sqlite3.Connection, table: str, owner_id: int, column: str, value: float) -> None:
    """Stores a computed number (text rendering included) for one owner/column."""
    owner = _owner_column(table)
    conn.execute(
        f"""
        INSERT INTO {table} ({owner}, column_name, value_text, value_num)
        VALUES (?, ?, ?, ?)
        ON CONFLICT({owner}, column_name) DO UPDATE SET
            value_text = excluded.value_text,
            value_num = excluded.value_num
        """,
        (owner_id, column, repr(float(value)), float(value)),
    )


def delete_values(
    conn: sqlite3.Connection,
    table: str,
    owner_ids: Sequence[int],
    columns: Sequence[str],
) -> int:
    """Removes the given columns from the given owners. Returns the number of cells removed."""
    if not owner_ids or not columns:
        return 0
    owner = _owner_column(table)
    cursor = conn.execute(
        f"""
        DELETE FROM {table}
        WHERE {owner} IN ({_placeholders(owner_ids)})
          AND column_name IN ({_placeholders(columns)})
        """,
        [*owner_ids, *columns],
    )
    return cursor.rowcount


def fetch_values(conn: sqlite3.Connection, table: str, owner_id: int) -> Dict[str, sqlite3.Row]:
    owner = _owner_column(table)
    rows = conn.execute(
        f"SELECT column_name, value_text, value_num FROM {table} WHERE {owner} = ?",
        (owner_id,),
    ).fetchall()
    return {row["column_name"]: row for row in rows}


def get_sample_id(conn: sqlite3.Connection, solution_label: str) -> Optional[int]:
    row = conn.execute(
        "SELECT id FROM sample_records WHERE solution_label = ?", (solution_label,)
    ).fetchone()
    return row["id"] if row else None


def run_sample_ids(conn: sqlite3.Connection, run_id: int) -> List[int]:
    return [
        row["sample_id"]
        for row in conn.execute(
            "SELECT sample_id FROM run_samples WHERE run_id = ? ORDER BY sample_id", (run_id,)
        )
    ]


def control_row_ids(conn: sqlite3.Connection, run_id: int, solution_label: str) -> List[int]:
    return [
        row["id"]
        for row in conn.execute(
            "SELECT id FROM control_rows WHERE run_id = ? AND solution_label = ? ORDER BY row_index",
            (run_id, solution_label),
        )
    ]


def numeric_values_for(
    conn: sqlite3.Connection,
    table: str,
    owner_ids: Sequence[int],
    columns: Sequence[str],
) -> List[sqlite3.Row]:
    """(owner_id, column_name, value_num) for the numeric cells of the given owners/columns."""
    if not owner_ids or not columns:
        return []
    owner = _owner_column(table)
    sql = f"""
        SELECT {owner} AS owner_id, column_name, value_num
        FROM {table}
        WHERE {owner} IN ({_placeholders(owner_ids)})
          AND column_name IN ({_placeholders(columns)})
          AND value_num IS NOT NULL
    """
    return conn.execute(sql, [*owner_ids, *columns]).fetchall()


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------

def control_column_stats(
    conn: sqlite3.Connection,
    run_ids: Sequence[int],
    solution_label: str,
    columns: Sequence[str],
) -> Dict[str, Dict[str, Any]]:
    """
    AVG(x), AVG(x*x) and COUNT(x) per column over the control rows of the
    given runs carrying `solution_label`. Columns without numeric cells are
    reported with avg None and n 0.
    """
    out: Dict[str, Dict[str, Any]] = {c: {"avg": None, "avg_sq": None, "n": 0} for c in columns}
    if not run_ids or not columns:
        return out
    sql = f"""
        SELECT cv.column_name,
               AVG(cv.value_num) AS avg_val,
               AVG(cv.value_num * cv.value_num) AS avg_sq,
               COUNT(cv.value_num) AS n
        FROM control_values cv
        JOIN control_rows cr ON cr.id = cv.control_id
        WHERE cr.run_id IN ({_placeholders(run_ids)})
          AND cr.solution_label = ?
          AND cv.column_name IN ({_placeholders(columns)})
        GROUP BY cv.column_name
    """
    try:
        rows = conn.execute(sql, [*run_ids, solution_label, *columns]).fetchall()
    except sqlite3.Error as e:
        log.exception("Control aggregate query failed: %s", e)
        raise
    for row in rows:
        out[row["column_name"]] = {"avg": row["avg_val"], "avg_sq": row["avg_sq"], "n": row["n"]}
    return out


def control_series(
    conn: sqlite3.Connection,
    run_ids: Sequence[int],
    solution_label: str,
    value_column: str,
    timestamp_column: str,
) -> List[sqlite3.Row]:
    """
    One row per matching control row: run id, upload time, row index, the
    timestamp cell text and the numeric value of `value_column`.
    """
    if not run_ids:
        return []
    sql = f"""
        SELECT r.id AS run_id,
               r.uploaded_at,
               cr.row_index,
               ts.value_text AS timestamp_text,
               v.value_num AS value
        FROM control_rows cr
        JOIN uploaded_runs r ON r.id = cr.run_id
        LEFT JOIN control_values v ON v.control_id = cr.id AND v.column_name = ?
        LEFT JOIN control_values ts ON ts.control_id = cr.id AND ts.column_name = ?
        WHERE cr.run_id IN ({_placeholders(run_ids)})
          AND cr.solution_label = ?
        ORDER BY r.uploaded_at, r.id, cr.row_index
    """
    try:
        return conn.execute(sql, [value_column, timestamp_column, *run_ids, solution_label]).fetchall()
    except sqlite3.Error as e:
        log.exception("Control series query failed: %s", e)
        raise


def sample_column_values(
    conn: sqlite3.Connection,
    run_ids: Sequence[int],
    column: str,
    label_prefix: str = "MCS",
) -> List[sqlite3.Row]:
    """Numeric values of one column for the samples linked to the given runs."""
    if not run_ids:
        return []
    sql = f"""
        SELECT rs.run_id,
               s.id AS sample_id,
               s.solution_label,
               v.value_num AS value
        FROM run_samples rs
        JOIN sample_records s ON s.id = rs.sample_id
        JOIN sample_values v ON v.sample_id = s.id AND v.column_name = ?
        WHERE rs.run_id IN ({_placeholders(run_ids)})
          AND s.solution_label LIKE ?
          AND v.value_num IS NOT NULL
        ORDER BY s.solution_label, rs.run_id
    """
    return conn.execute(sql, [column, *run_ids, f"{label_prefix}%"]).fetchall()
