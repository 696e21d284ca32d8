"""MedCure POS: pharmacy sale engine with a stock movement ledger.

Importing the package sets up the shared ``log``. Records go to stderr and to
a rotating file, ``medcure_pos.log``, under ``MEDCURE_POS_LOG_DIR`` or the
project's ``.logs`` directory. A ``LogDirectory`` entry in ``config.ini``
moves the file once the runtime context is loaded.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("MEDCURE_POS_LOG_DIR") or PROJECT_ROOT / ".logs")
LOG_FILE_NAME = "medcure_pos.log"

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _file_handler(log_dir: Path) -> Optional[RotatingFileHandler]:
    log_file = log_dir / LOG_FILE_NAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{log_file}': {exc}", file=sys.stderr)
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(_FORMATTER)
    return handler


def _configure_logging() -> logging.Logger:
    """Configure package-wide logging with file and console handlers."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    file_handler = _file_handler(LOG_DIR)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(_FORMATTER)
    logger.addHandler(console_handler)
    return logger


def redirect_log_file(log_dir: Path) -> Optional[Path]:
    """Move the rotating log file to ``log_dir``.

    The console handler is left alone. When the new file cannot be opened the
    current one is kept and ``None`` is returned.
    """

    log_dir = Path(log_dir)
    current = [h for h in log.handlers if isinstance(h, RotatingFileHandler)]
    if any(Path(h.baseFilename).resolve().parent == log_dir.resolve() for h in current):
        return log_dir / LOG_FILE_NAME

    replacement = _file_handler(log_dir)
    if replacement is None:
        return None
    for handler in current:
        log.removeHandler(handler)
        handler.close()
    log.addHandler(replacement)
    log.info("Log file moved to '%s'", replacement.baseFilename)
    return Path(replacement.baseFilename)


log = _configure_logging()
log.info("Logger initialized for the 'medcure_pos' package.")
