"""
Logging for Clip Montage

One package logger (``clip_montage``) writes to stdout. INFO lines are printed
bare so progress output stays readable; other levels carry a time and tag.
While a job runs, its records are also copied to ``<log_dir>/montage_<id>.log``.

Usage:
    from clip_montage.logger import logger, log_phase

    log_phase("RENDER")
    logger.info("   ✅ Variation 1 assembled")

Set LOG_LEVEL=DEBUG to see ffmpeg command lines.
"""

import logging
import os
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

LOGGER_NAME = "clip_montage"

_LEVEL_TAGS = {
    logging.DEBUG: "DEBUG",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRITICAL",
}


def get_log_level() -> int:
    """Level named by LOG_LEVEL; unknown names mean INFO."""
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


class ConsoleFormatter(logging.Formatter):
    """Bare INFO lines, timestamped and tagged lines for everything else."""

    def __init__(self):
        super().__init__(datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        tag = _LEVEL_TAGS.get(record.levelno)
        if tag is None:
            text = message
        else:
            origin = f" {record.name}:" if record.levelno == logging.DEBUG else ""
            text = f"{self.formatTime(record, self.datefmt)} [{tag}]{origin} {message}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def _file_formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logger(name: str = LOGGER_NAME, level: Optional[int] = None) -> logging.Logger:
    """
    Attach the console handler to ``name`` once and return the logger.

    Calling it again is a no-op, so importing modules never duplicates output.
    """
    log = logging.getLogger(name)
    if log.handlers:
        return log

    log_level = level or get_log_level()
    log.setLevel(log_level)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    console.setFormatter(ConsoleFormatter())
    log.addHandler(console)
    return log


class _JobRecordFilter(logging.Filter):
    """
    Pass records emitted by one job: the thread running it and its
    ``variation-<job prefix>`` worker threads.
    """

    def __init__(self, job_id: str, owner_thread: int):
        super().__init__()
        self.owner_thread = owner_thread
        self.worker_prefix = f"variation-{job_id[:8]}"

    def filter(self, record: logging.LogRecord) -> bool:
        return record.thread == self.owner_thread or record.threadName.startswith(self.worker_prefix)


@contextmanager
def job_file_logging(log_dir: Path, job_id: str) -> Iterator[Path]:
    """
    Copy this job's records into its own log file for the duration of the block.

    Args:
        log_dir: Directory for the log file
        job_id: Job identifier for log filename

    Yields:
        Path of the job log file
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"montage_{job_id}.log"

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_file_formatter())
    handler.addFilter(_JobRecordFilter(job_id, threading.get_ident()))
    logger.addHandler(handler)
    try:
        yield log_path
    finally:
        logger.removeHandler(handler)
        handler.close()


logger = setup_logger()


def log_phase(phase: str) -> None:
    """Banner between pipeline stages."""
    rule = "─" * 48
    logger.info(rule)
    logger.info(f"  {phase}")
    logger.info(rule)


def log_success(message: str) -> None:
    logger.info(f"   ✅ {message}")


def log_warning(message: str) -> None:
    logger.warning(f"   ⚠️  {message}")
