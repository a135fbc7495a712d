"""
Imprint Structured Logger
=========================

Provides :class:`ImprintLogger`, a logging facade that emits Rich console
output on stderr and, optionally, plain-text or JSON-lines records to a
rotating log file.

Every record carries the component name and the current *operation*
(``"inspect"``, ``"inject_string"``, ``"dump"`` ...) plus any keyword
context passed to the log call, e.g. ``symbol=`` or ``offset=``.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich library. https://github.com/Textualize/rich
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

_LOG_THEME = Theme(
    {
        "log.level.debug": "dim cyan",
        "log.level.info": "bold bright_blue",
        "log.level.warning": "bold yellow",
        "log.level.error": "bold red",
    }
)

_PASSTHROUGH_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})


# ========================== Record context =================================


class _ContextFilter(logging.Filter):
    """Stamp component and operation onto every record of one logger."""

    def __init__(self, owner: ImprintLogger) -> None:
        super().__init__()
        self._owner = owner

    def filter(self, record: logging.LogRecord) -> bool:
        record.component = self._owner.component
        record.operation = self._owner.current_operation
        return True


# ========================== Formatters =====================================


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single-line JSON object.

    Output fields::

        {
          "timestamp": "...",
          "level": "INFO",
          "logger": "imprint.engine",
          "message": "...",
          "component": "engine",
          "operation": "inject_string",
          "extra": {"symbol": "build_id", "offset": 4096},
          "exc_info": "..."
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "component": getattr(record, "component", None),
        }

        operation = getattr(record, "operation", None)
        if operation is not None:
            entry["operation"] = operation

        context = getattr(record, "imprint_extra", None)
        if context:
            entry["extra"] = context

        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class _PlainFormatter(logging.Formatter):
    """``timestamp | LEVEL | logger | [operation] message key=value ...``"""

    def formatMessage(self, record: logging.LogRecord) -> str:
        message = record.message
        operation = getattr(record, "operation", None)
        if operation:
            message = f"[{operation}] {message}"
        context = getattr(record, "imprint_extra", None)
        if context:
            message += " " + " ".join(f"{k}={v}" for k, v in context.items())
        timestamp = self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z")
        return f"{timestamp} | {record.levelname:<8} | {record.name} | {message}"


# ========================== Handlers =======================================


def _console_handler(level: int) -> logging.Handler:
    # stderr keeps log lines out of ``dump --plain`` listings on stdout
    return RichHandler(
        console=Console(theme=_LOG_THEME, stderr=True),
        level=level,
        show_path=False,
        show_time=True,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        markup=False,
    )


def _file_handler(
    path: Path, level: int, json_logs: bool, max_bytes: int, backup_count: int
) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(_JSONFormatter() if json_logs else _PlainFormatter())
    return handler


# ========================== Timing =========================================


class Stopwatch:
    """Elapsed wall-clock time since creation."""

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self._start


# ========================== ImprintLogger ==================================


class ImprintLogger:
    """Structured, context-aware logger for Imprint components.

    Each instance is bound to a *component* name (e.g. ``"engine"``) and
    can carry a temporary *operation* context via a context manager.

    Usage::

        log = ImprintLogger("engine", log_file="imprint.log", json_logs=True)
        log.info("Stamping %s", path)
        with log.operation("inject_string"):
            log.debug("Resolved symbol", symbol=name, offset=offset)

    Args:
        component:       Identifying name for the Imprint component.
        log_level:       Minimum severity (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file:        Path to the rotating log file. ``None`` disables file logging.
        json_logs:       If ``True`` the file handler emits JSON lines.
        max_bytes:       Maximum log-file size before rotation (default 10 MiB).
        backup_count:    Number of rotated backup files to keep.
        console_output:  If ``True`` attach a colour Rich console handler.
    """

    def __init__(
        self,
        component: str,
        *,
        log_level: str = "INFO",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
        console_output: bool = True,
    ) -> None:
        self._component = component
        self._operation: str | None = None
        level = getattr(logging, log_level.upper(), logging.INFO)

        self._logger = logging.getLogger(f"imprint.{component}")
        self._logger.setLevel(level)
        self._logger.propagate = False

        # Re-instantiation replaces the previous handlers and filters
        self._logger.handlers.clear()
        self._logger.filters.clear()
        self._logger.addFilter(_ContextFilter(self))

        if console_output:
            self._logger.addHandler(_console_handler(level))
        if log_file:
            self._logger.addHandler(
                _file_handler(Path(log_file), level, json_logs, max_bytes, backup_count)
            )

    # ------------------------------------------------------------------ #
    #  Scopes
    # ------------------------------------------------------------------ #

    @contextmanager
    def operation(self, name: str) -> Iterator[ImprintLogger]:
        """Bind *name* as the ``operation`` field of every record inside the block."""
        previous, self._operation = self._operation, name
        try:
            yield self
        finally:
            self._operation = previous

    @contextmanager
    def timed(self, label: str) -> Iterator[Stopwatch]:
        """Log start and finish of the block with its elapsed time.

        Usage::

            with log.timed("stamp libfoo.so") as watch:
                engine.inject_string(...)
            print(watch.elapsed)
        """
        watch = Stopwatch()
        self.debug("Started: %s", label)
        try:
            yield watch
        except BaseException:
            self.debug("Aborted: %s (%.3f sec)", label, watch.elapsed)
            raise
        self.info("Completed: %s (%.3f sec)", label, watch.elapsed)

    # ------------------------------------------------------------------ #
    #  Log methods
    # ------------------------------------------------------------------ #

    def _log(self, level: int, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        passthrough = {k: kwargs.pop(k) for k in list(kwargs) if k in _PASSTHROUGH_KWARGS}
        extra = {"imprint_extra": kwargs} if kwargs else None
        passthrough.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, extra=extra, **passthrough)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, args, kwargs)

    # ------------------------------------------------------------------ #
    #  Properties
    # ------------------------------------------------------------------ #

    @property
    def component(self) -> str:
        """Name of the Imprint component this logger is bound to."""
        return self._component

    @property
    def current_operation(self) -> str | None:
        return self._operation

    @property
    def underlying(self) -> logging.Logger:
        """Direct access to the stdlib :class:`logging.Logger`."""
        return self._logger
