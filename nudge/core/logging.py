"""
Logging setup — console plus a daily log file for the delivery engine.

Only the "nudge" logger tree is configured; every module logs through
logging.getLogger(__name__).  The HTTP stack under pywebpush is held at
WARNING so per-send connection chatter stays out of the pass logs.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

NOISY_LOGGERS = ("urllib3", "requests", "pywebpush")

CONSOLE_FORMAT = "[%(levelname)s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def log_file_for(log_dir: Path, day: datetime | None = None) -> Path:
    """nudge_YYYYMMDD.log inside log_dir."""
    return log_dir / f"nudge_{(day or datetime.now()).strftime('%Y%m%d')}.log"


def setup_logging(
    log_dir: Path | None = None,
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Configure the nudge logger.

    Args:
        log_dir: Directory for log files (default: ~/.nudge/logs)
        console_level: Minimum level for console output
        file_level: Minimum level for the daily file

    Returns:
        The "nudge" logger
    """
    log_dir = log_dir or (Path.home() / ".nudge" / "logs")
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("nudge")
    logger.setLevel(min(console_level, file_level))
    logger.propagate = False

    # Re-running setup (tests, repeated CLI calls) must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    log_file = log_file_for(log_dir)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging to {log_file}")
    return logger


def level_from_name(name: str, default: int = logging.INFO) -> int:
    """Map 'debug' / 'INFO' / ... to a logging level, falling back to default."""
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default
