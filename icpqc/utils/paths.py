# icpqc/utils/paths.py
"""
This module provides utilities for creating file paths for uploaded runs
and logs, ensuring a consistent directory structure.
"""

import re
from pathlib import Path
from datetime import datetime
from typing import Optional

from .logging import get_logger

log = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str) -> str:
    """Reduce an uploaded file name to a filesystem-safe stem."""
    stem = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
    return stem or "upload"


def upload_path_for(upload_dir: Path, original_name: str, suffix: Optional[str] = None) -> Path:
    """
    Creates a unique, timestamped path for an uploaded file.
    The upload directory is created if it doesn't exist.

    Args:
        upload_dir: Directory holding raw uploads.
        original_name: Name the file was uploaded under.
        suffix: An optional custom tag for the file name; defaults to a timestamp.

    Returns:
        A path inside upload_dir that does not exist yet.
    """
    upload_dir = Path(upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)

    if suffix is None:
        suffix = datetime.now().strftime("%Y%m%d_%H%M%S_%f")

    base = safe_filename(original_name)
    candidate = upload_dir / f"{suffix}__{base}"
    counter = 1
    while candidate.exists():
        candidate = upload_dir / f"{suffix}_{counter}__{base}"
        counter += 1
    log.debug("Upload path for '%s': %s", original_name, candidate)
    return candidate


def run_log_path(output_dir: Path, cfg_hash: str) -> Path:
    """Returns the default log file for a CLI invocation: <output_dir>/run_logs/<date_time>__cfg-<hash>.log"""
    dt_str = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    log_dir = Path(output_dir) / "run_logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"{dt_str}__cfg-{cfg_hash}.log"
