# icpqc/utils/logging.py
"""
Logging for the icpqc CLI and pipeline.

Every module logs through `get_logger(__name__)`; the handlers live on the
single "icpqc" logger. The CLI calls `setup_logger` twice per invocation:
once in the callback (console only, or the --log-file given), and again
once the store config is resolved, to attach the run log under
<output_dir>/run_logs/. The second call replaces the first set of handlers.
"""

import logging
from pathlib import Path
from typing import Optional
from rich.logging import RichHandler

ROOT_LOGGER = "icpqc"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _file_handler(logfile: Path, level: int) -> logging.FileHandler:
    logfile = Path(logfile)
    logfile.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(logfile)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logger(logfile: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """
    Routes icpqc log records to the console and, optionally, to a run log.

    Ingestion steps (validation failures, rollbacks, correction counts) log at
    INFO or above; per-column details such as skipped correction factors log
    at DEBUG and only show with --verbose.

    Args:
        logfile: Run log to append to, e.g. run_logs/<date_time>__cfg-<hash>.log.
        verbose: Lower the level to DEBUG.

    Returns:
        The "icpqc" logger.
    """
    level = logging.DEBUG if verbose else logging.INFO

    log = logging.getLogger(ROOT_LOGGER)
    log.setLevel(level)
    log.propagate = False

    # reconfiguring must release the previous run log's file handle
    for handler in list(log.handlers):
        handler.close()
        log.removeHandler(handler)

    console = RichHandler(rich_tracebacks=True, show_path=False, log_time_format="[%X]")
    console.setLevel(level)
    log.addHandler(console)

    if logfile:
        log.addHandler(_file_handler(logfile, level))
        log.debug("Run log: %s", logfile)

    return log


def get_logger(name: str) -> logging.Logger:
    """Module logger; `name` is a dotted path under "icpqc"."""
    return logging.getLogger(name)
