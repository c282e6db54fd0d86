"""Logging for the constraint desk.

Console output at LOG_LEVEL, full DEBUG output to a timestamped file per
process run plus ``constraint_desk.log`` (always the current run). Old
run files beyond LOG_RETAIN_FILES are pruned at startup.

Components log through the shared ``logger`` with a ``[Component]``
prefix in the message.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from constraint_desk.config import settings

_LOGGER_NAME = "constraint_desk"
_RUN_FILE_GLOB = f"{_LOGGER_NAME}_*.log"
_FORMAT = logging.Formatter(
    "[%(asctime)s] %(levelname)-8s %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _prune_run_files(logs_dir: Path, keep: int) -> int:
    """Delete the oldest run files beyond ``keep``. Returns how many went."""
    run_files = sorted(logs_dir.glob(_RUN_FILE_GLOB), key=lambda p: p.stat().st_mtime)
    removed = 0
    for old in run_files[: max(len(run_files) - keep, 0)]:
        try:
            old.unlink()
            removed += 1
        except OSError:
            pass
    return removed


def _file_handler(path: Path, mode: str = "a") -> logging.Handler:
    handler = logging.FileHandler(path, mode=mode, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_FORMAT)
    return handler


def _setup_logger() -> logging.Logger:
    log = logging.getLogger(_LOGGER_NAME)
    log.setLevel(logging.DEBUG)
    if log.handlers:
        return log

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(settings.LOG_LEVEL)
    console.setFormatter(_FORMAT)
    log.addHandler(console)

    logs_dir = settings.LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    run_file = logs_dir / f"{_LOGGER_NAME}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
    log.addHandler(_file_handler(run_file))
    try:
        # Second handler instead of a symlink so it works on Windows
        log.addHandler(_file_handler(logs_dir / f"{_LOGGER_NAME}.log", mode="w"))
    except OSError:
        pass

    removed = _prune_run_files(logs_dir, settings.LOG_RETAIN_FILES)
    log.info("Log started: %s (%d old run files pruned)", run_file.name, removed)
    return log


logger = _setup_logger()
