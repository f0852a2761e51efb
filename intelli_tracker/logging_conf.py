"""structlog over stdlib logging: a rolling tracker log plus one JSON file per run."""

from __future__ import annotations

import logging
import logging.config
import os
import re
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

import structlog
from pythonjsonlogger.jsonlogger import JsonFormatter

RUNS_DIR = "runs"
RUN_LOGGER = "intelli_tracker.run"
STAMP_FORMAT = "%Y%m%d-%H%M%S"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_RUN_FILE = re.compile(r"^(?P<stamp>\d{8}-\d{6})_(?P<mode>[a-z]+)_(?P<run>[0-9a-f]+)\.log$")
_CONFIGURED = False


@dataclass(frozen=True, slots=True)
class RunLogFile:
    path: Path
    mode: str
    run_id: str
    started: datetime


class _RunFilter(logging.Filter):
    """Only pass events bound to one run."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        payload = record.msg
        return isinstance(payload, dict) and payload.get("run_id") == self.run_id


def log_dir() -> Path:
    env_root = os.environ.get("INTELLI_TRACKER_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def tracker_log_path() -> Path:
    return log_dir() / "tracker.log"


def _dict_config(directory: Path, level: str) -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": JSON_FORMAT},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
            # scheduled runs append forever, so the main log rolls over
            "tracker_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "INFO",
                "filename": str(directory / "tracker.log"),
                "maxBytes": 5 * 1024 * 1024,
                "backupCount": 3,
                "encoding": "utf-8",
                "formatter": "json",
            },
            "error_file": {
                "class": "logging.FileHandler",
                "level": "ERROR",
                "filename": str(directory / "error.log"),
                "encoding": "utf-8",
                "formatter": "json",
            },
        },
        "loggers": {
            "intelli_tracker": {
                "handlers": ["console", "tracker_file", "error_file"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers once and return the application logger."""

    global _CONFIGURED
    directory = log_dir()
    (directory / RUNS_DIR).mkdir(parents=True, exist_ok=True)
    if not _CONFIGURED:
        logging.config.dictConfig(_dict_config(directory, "DEBUG" if verbose else "INFO"))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _CONFIGURED = True
    return structlog.get_logger("intelli_tracker")


def run_log_path(mode: str, run_id: str, started: float) -> Path:
    stamp = datetime.fromtimestamp(started).strftime(STAMP_FORMAT)
    return log_dir() / RUNS_DIR / f"{stamp}_{mode}_{run_id[:8]}.log"


@contextmanager
def run_log(mode: str, run_id: str, started: float | None = None) -> Iterator[structlog.BoundLogger]:
    """Yield a logger bound to one run whose events are also written to the run's own file.

    The file handler is detached when the run ends, so ``log tail`` on a
    finished run shows exactly that run.
    """

    configure_logging()
    path = run_log_path(mode, run_id, time.time() if started is None else started)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(JsonFormatter(JSON_FORMAT))
    handler.setLevel(logging.INFO)
    handler.addFilter(_RunFilter(run_id))
    py_logger = logging.getLogger(RUN_LOGGER)
    py_logger.addHandler(handler)
    try:
        yield structlog.get_logger(RUN_LOGGER).bind(mode=mode, run_id=run_id)
    finally:
        py_logger.removeHandler(handler)
        handler.close()


def run_logs(mode: str | None = None) -> list[RunLogFile]:
    """Per-run log files, newest first."""

    runs_dir = log_dir() / RUNS_DIR
    if not runs_dir.exists():
        return []
    found: list[RunLogFile] = []
    for path in runs_dir.glob("*.log"):
        match = _RUN_FILE.match(path.name)
        if match is None or (mode is not None and match["mode"] != mode):
            continue
        found.append(
            RunLogFile(
                path=path,
                mode=match["mode"],
                run_id=match["run"],
                started=datetime.strptime(match["stamp"], STAMP_FORMAT),
            )
        )
    return sorted(found, key=lambda item: (item.started, item.path.name), reverse=True)


def find_run_log(run_id: str) -> RunLogFile | None:
    prefix = run_id[:8]
    return next((item for item in run_logs() if item.run_id.startswith(prefix)), None)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if line_count <= 0 or not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=line_count))


__all__ = [
    "RunLogFile",
    "configure_logging",
    "find_run_log",
    "log_dir",
    "run_log",
    "run_log_path",
    "run_logs",
    "tail_log",
    "tracker_log_path",
]
