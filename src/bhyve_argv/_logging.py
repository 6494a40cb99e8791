"""Centralized logging for bhyve-argv.

Library logging conventions:
- Attach NullHandler to the library root logger
- Never add other handlers -- that's the application's job
- Support BHYVE_ARGV_LOG_LEVEL env var for level control
- Provide configure_logging() for the CLI entry point

CLI output format (extra={...} fields appended as key=value):
    WARNING [2026-02-25 10:02:54] bhyve_argv.devices - message | vm=vm0 port=5905

Records are handed to a QueueListener thread that writes them with
click.echo(err=True), so a saturated stderr never blocks a build.
"""

import atexit
import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "bhyve_argv"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

# Honor BHYVE_ARGV_LOG_LEVEL env var (e.g. "DEBUG", "WARNING", "ERROR")
_env_level = os.environ.get("BHYVE_ARGV_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # excludes NOTSET (0) and missing keys (None)
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_QUEUE_CAPACITY = 1024

# Attributes every LogRecord carries; anything else arrived through extra={...}.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def record_context(record: logging.LogRecord) -> dict[str, object]:
    """Fields passed to a log call through extra={...}, in call order."""
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS and not k.startswith("_")}


class _ContextFormatter(logging.Formatter):
    """Standard line followed by the record's extra fields as key=value pairs.

    Example:
        INFO [...] bhyve_argv.bhyve_cmd - Built bhyve command | vm=vm0 dry_run=False ifnames=['tap0'] ports=[5900]
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        return f"{line} | " + " ".join(f"{k}={v}" for k, v in context.items())


class _ClickHandler(logging.Handler):
    """Target handler: writes to stderr via click.echo with dim styling."""

    def __init__(self) -> None:
        super().__init__()
        self.formatter = _ContextFormatter(fmt=_FMT, datefmt=_DATEFMT)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            click.echo(click.style(msg, dim=True), err=True)
        except BlockingIOError:
            pass  # Stderr buffer full -- silently drop
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """Queue-backed handler that never blocks the caller.

    When the bounded queue is full, records are dropped.
    """

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self._listener = logging.handlers.QueueListener(q, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        """Skip serialization -- same-process queue, no pickle needed."""
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    All bhyve_argv modules should use this instead of logging.getLogger()
    directly for consistent logger hierarchy.
    """
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Configure library logging for CLI / application entry points.

    Adds a _NonBlockingHandler if none exists (idempotent), then sets the
    log level.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). Overrides env var.
        quiet: If True, set level to ERROR (suppress WARNING/INFO).
               Takes precedence over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())
        # The listener thread is a daemon: drain the queue before the CLI exits.
        atexit.register(shutdown_logging)

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)


def shutdown_logging() -> None:
    """Flush queued records to stderr and remove the CLI handler (idempotent)."""
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    for handler in [h for h in lib_logger.handlers if isinstance(h, _NonBlockingHandler)]:
        lib_logger.removeHandler(handler)
        handler.close()
