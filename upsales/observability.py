"""
Logging setup for compensation runs.

Every batch run gets a short run id kept in a ContextVar; both formatters
stamp it on each line so one run can be followed from the fetch through
the report write.

    setup_logging(level="INFO")
    logger = get_logger(__name__)

    with run_scope() as run_id:
        with Timer("compensation_run", logger):
            ...
"""
import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional, TextIO

_run_id: ContextVar[Optional[str]] = ContextVar("upsales_run_id", default=None)

# Third-party loggers muted below WARNING unless include_libs is set
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler", "openpyxl")

# A Timer slower than this logs at WARNING
SLOW_STAGE_MS = 1000.0

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def current_run_id() -> Optional[str]:
    return _run_id.get()


def new_run_id() -> str:
    """Eight hex chars, enough to tell runs of one day apart."""
    return uuid.uuid4().hex[:8]


@contextmanager
def run_scope(run_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a run id for the duration of the block.

    Without an explicit id the enclosing run's id is kept, so nested stages
    log under the batch that started them; outside any run a fresh id is made.
    """
    token = _run_id.set(run_id or _run_id.get() or new_run_id())
    try:
        yield _run_id.get()
    finally:
        _run_id.reset(token)


def record_extras(record: logging.LogRecord) -> dict:
    """Fields passed through `extra=`."""
    return {
        key: value for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; Cyrillic is written as is."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        run_id = current_run_id()
        if run_id:
            entry["run_id"] = run_id
        entry.update(record_extras(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """`time - LEVEL - logger [run] - message | key=value ...` for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        run_id = current_run_id()
        source = f"{record.name} [{run_id}]" if run_id else record.name
        line = " - ".join((
            self.formatTime(record, "%Y-%m-%d %H:%M:%S"),
            f"{record.levelname:8}",
            source,
            record.getMessage(),
        ))

        extras = record_extras(record)
        if extras:
            line += " | " + " ".join(f"{key}={value}" for key, value in extras.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_libs: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Route all logging through a single stream handler.

    Args:
        level: Root log level name
        json_format: JSON lines instead of the console format
        include_libs: Leave NOISY_LOGGERS at the root level
        stream: Target stream, stderr by default
    """
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    if not include_libs:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class Timer:
    """
    Measure a pipeline stage and log how long it took.

    The line goes out at DEBUG, or at WARNING once the stage exceeds slow_ms.
    """

    def __init__(
        self,
        name: str,
        logger: Optional[logging.Logger] = None,
        slow_ms: float = SLOW_STAGE_MS,
    ):
        self.name = name
        self.logger = logger
        self.slow_ms = slow_ms
        self.elapsed_ms: float = 0.0
        self._started: float = 0.0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, *exc_info) -> None:
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        if self.logger is None:
            return
        level = logging.WARNING if self.elapsed_ms > self.slow_ms else logging.DEBUG
        self.logger.log(
            level,
            f"{self.name} completed",
            extra={"stage": self.name, "duration_ms": round(self.elapsed_ms, 2)},
        )
