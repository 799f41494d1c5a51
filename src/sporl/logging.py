"""Structured logging configuration for sporl.

Sets up two log streams via ``RotatingFileHandler``:

- ``sporl.log``: human-readable, all log events
- ``sync.log``: JSON-formatted, only ``sporl.sync.*`` events

Both handlers rotate at 10 MB with 5 backup files.  The terminal is left to
the CLI's rich console; a crash still prints its traceback there after it
is written to ``sporl.log``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import TracebackType

import structlog

_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_BACKUP_COUNT = 5

_shared_processors: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def setup_logging(
    log_level: str = "info",
    log_dir: Path | None = None,
    *,
    verbose: bool = False,
) -> None:
    """Configure structlog and stdlib logging.

    Parameters
    ----------
    log_level:
        Python log-level name (``debug``, ``info``, ``warning``, etc.).
    log_dir:
        Directory for log files.  When *None* no file handlers are created
        (useful for testing).
    verbose:
        Also echo every event to stderr with colors (``sporl --verbose``).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            *_shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    human_formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=_shared_processors,
    )
    json_formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=_shared_processors,
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)

        main_handler = RotatingFileHandler(
            log_dir / "sporl.log",
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        main_handler.setFormatter(human_formatter)
        root.addHandler(main_handler)

        sync_handler = RotatingFileHandler(
            log_dir / "sync.log",
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        sync_handler.setFormatter(json_formatter)
        sync_handler.addFilter(logging.Filter("sporl.sync"))
        root.addHandler(sync_handler)

    if verbose:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.dev.ConsoleRenderer(colors=True),
                foreign_pre_chain=_shared_processors,
            )
        )
        root.addHandler(stderr_handler)

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _install_excepthook(sys.excepthook)


def _install_excepthook(previous: Callable[..., object]) -> None:
    """Record uncaught errors in sporl.log, then let *previous* print them."""
    if getattr(previous, "_sporl_hook", False):
        previous = sys.__excepthook__

    def _hook(exc_type: type[BaseException], exc_value: BaseException, exc_tb: TracebackType | None) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            structlog.get_logger("sporl").critical(
                "uncaught_exception",
                exc_info=(exc_type, exc_value, exc_tb),
            )
        previous(exc_type, exc_value, exc_tb)

    _hook._sporl_hook = True  # type: ignore[attr-defined]
    sys.excepthook = _hook
