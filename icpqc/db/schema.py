"""
Schema definitions for initializing the QC database.

Tables are grouped by domain:
  • uploaded_runs       one row per ingested instrument export
  • sample_*            globally unique samples and their measured values
  • control_*           calibration / control rows, owned by their run
  • reference_standards certificate of the secondary (SJS) standard

Measured values live in tall tables following the pattern (owner_id,
column_name, value_text, value_num) so the instrument header lists can change
without migrations. Column names are checked against the canonical schema
before they are written.
"""

# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

CREATE_UPLOADED_RUNS = """
CREATE TABLE IF NOT EXISTS uploaded_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT NOT NULL,
    path TEXT NOT NULL,
    doc_name TEXT,
    doc_path TEXT,
    uploaded_at TEXT NOT NULL DEFAULT (datetime('now')),
    instrument TEXT NOT NULL CHECK (instrument IN ('major', 'trace')),
    hidden INTEGER NOT NULL DEFAULT 0
);
"""

# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------

CREATE_SAMPLE_RECORDS = """
CREATE TABLE IF NOT EXISTS sample_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    solution_label TEXT NOT NULL UNIQUE
);
"""

CREATE_SAMPLE_VALUES = """
CREATE TABLE IF NOT EXISTS sample_values (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sample_id INTEGER NOT NULL,
    column_name TEXT NOT NULL,
    value_text TEXT,
    value_num REAL,
    FOREIGN KEY(sample_id) REFERENCES sample_records(id) ON DELETE CASCADE,
    UNIQUE(sample_id, column_name)
);
"""

CREATE_SAMPLE_AUX_VALUES = """
CREATE TABLE IF NOT EXISTS sample_aux_values (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sample_id INTEGER NOT NULL,
    column_name TEXT NOT NULL,
    value_text TEXT,
    value_num REAL,
    FOREIGN KEY(sample_id) REFERENCES sample_records(id) ON DELETE CASCADE,
    UNIQUE(sample_id, column_name)
);
"""

CREATE_RUN_SAMPLES = """
CREATE TABLE IF NOT EXISTS run_samples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    sample_id INTEGER NOT NULL,
    FOREIGN KEY(run_id) REFERENCES uploaded_runs(id) ON DELETE CASCADE,
    FOREIGN KEY(sample_id) REFERENCES sample_records(id) ON DELETE CASCADE,
    UNIQUE(run_id, sample_id)
);
"""

# ---------------------------------------------------------------------------
# Control rows
# ---------------------------------------------------------------------------

CREATE_CONTROL_ROWS = """
CREATE TABLE IF NOT EXISTS control_rows (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    solution_label TEXT NOT NULL,
    row_index INTEGER NOT NULL,
    FOREIGN KEY(run_id) REFERENCES uploaded_runs(id) ON DELETE CASCADE,
    UNIQUE(run_id, row_index)
);
"""

CREATE_CONTROL_VALUES = """
CREATE TABLE IF NOT EXISTS control_values (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    control_id INTEGER NOT NULL,
    column_name TEXT NOT NULL,
    value_text TEXT,
    value_num REAL,
    FOREIGN KEY(control_id) REFERENCES control_rows(id) ON DELETE CASCADE,
    UNIQUE(control_id, column_name)
);
"""

# ---------------------------------------------------------------------------
# Reference standard
# ---------------------------------------------------------------------------

CREATE_REFERENCE_STANDARDS = """
CREATE TABLE IF NOT EXISTS reference_standards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    row_label TEXT NOT NULL CHECK (row_label IN ('SJS-Std', 'Error')),
    column_name TEXT NOT NULL,
    value_num REAL,
    UNIQUE(row_label, column_name)
);
"""

# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------

# Filenames are unique among visible runs; hidden runs keep their renamed row.
CREATE_INDEX_RUNS_ACTIVE_FILENAME = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_uploaded_runs_active_filename
ON uploaded_runs(filename) WHERE hidden = 0;
"""

CREATE_INDEX_RUNS_UPLOADED_AT = """
CREATE INDEX IF NOT EXISTS idx_uploaded_runs_uploaded_at
ON uploaded_runs(uploaded_at, hidden);
"""

CREATE_INDEX_SAMPLE_VALUES_COLUMN = """
CREATE INDEX IF NOT EXISTS idx_sample_values_column
ON sample_values(column_name);
"""

CREATE_INDEX_RUN_SAMPLES_SAMPLE = """
CREATE INDEX IF NOT EXISTS idx_run_samples_sample
ON run_samples(sample_id);
"""

CREATE_INDEX_CONTROL_ROWS_RUN_LABEL = """
CREATE INDEX IF NOT EXISTS idx_control_rows_run_label
ON control_rows(run_id, solution_label);
"""

CREATE_INDEX_CONTROL_VALUES_COLUMN = """
CREATE INDEX IF NOT EXISTS idx_control_values_column
ON control_values(column_name, control_id);
"""


ALL_TABLES = [
    CREATE_UPLOADED_RUNS,
    CREATE_SAMPLE_RECORDS,
    CREATE_SAMPLE_VALUES,
    CREATE_SAMPLE_AUX_VALUES,
    CREATE_RUN_SAMPLES,
    CREATE_CONTROL_ROWS,
    CREATE_CONTROL_VALUES,
    CREATE_REFERENCE_STANDARDS,
]

ALL_INDEXES = [
    CREATE_INDEX_RUNS_ACTIVE_FILENAME,
    CREATE_INDEX_RUNS_UPLOADED_AT,
    CREATE_INDEX_SAMPLE_VALUES_COLUMN,
    CREATE_INDEX_RUN_SAMPLES_SAMPLE,
    CREATE_INDEX_CONTROL_ROWS_RUN_LABEL,
    CREATE_INDEX_CONTROL_VALUES_COLUMN,
]
