# icpqc/utils/config.py
"""
Configuration loading utility.

A config is a small YAML document:

    run:
      output_dir: ./qc_output
    store:
      db: ./qc_output/icpqc.sqlite
      upload_dir: ./qc_output/uploads

Every key is optional; `resolve_store_paths` fills in the defaults.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, Union

DEFAULT_DB_NAME = "icpqc.sqlite"
DEFAULT_UPLOAD_DIRNAME = "uploads"


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Loads a YAML configuration file.

    Args:
        path: The path to the YAML file.

    Returns:
        A dictionary containing the configuration (empty for an empty file).
    """
    with open(path, 'r') as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def output_dir_from(cfg: Dict[str, Any]) -> Path:
    return Path((cfg.get("run") or {}).get("output_dir", ".")).resolve()


def resolve_store_paths(
    cfg: Dict[str, Any],
    db_override: Optional[Path] = None,
    upload_override: Optional[Path] = None,
) -> Tuple[Path, Path]:
    """
    Work out the database file and upload directory for a config.

    CLI overrides win over `store.*` keys, which win over defaults rooted at
    `run.output_dir`.
    """
    output_dir = output_dir_from(cfg)
    store = cfg.get("store") or {}

    if db_override is not None:
        db_path = Path(db_override)
    elif store.get("db"):
        db_path = Path(store["db"])
    else:
        db_path = output_dir / DEFAULT_DB_NAME

    if upload_override is not None:
        upload_dir = Path(upload_override)
    elif store.get("upload_dir"):
        upload_dir = Path(store["upload_dir"])
    else:
        # Keep uploads next to the database when only --db was given
        upload_dir = db_path.resolve().parent / DEFAULT_UPLOAD_DIRNAME

    return db_path, upload_dir
