"""Structured logging for the flow engine and the ``qflow`` CLI.

Engine modules log through ``get_logger(__name__)``; nothing is printed
unless the CLI raises verbosity. With ``--log-dir`` every event, at any
level, is also appended to ``{log_dir}/flow-events.jsonl``.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

EVENTS_FILE = "flow-events.jsonl"

# verbosity -> console threshold; anything above the table means DEBUG
_CONSOLE_LEVELS = (logging.WARNING, logging.INFO)

_configured = False
_file_handler: logging.FileHandler | None = None
_logs_dir: Path | None = None


class FlowEventFormatter(logging.Formatter):
    """Render one record as a JSON object on a single line.

    structlog hands its event dict over in ``record.msg``; its keys are
    flattened next to ``timestamp``, ``level`` and ``logger`` so an event
    such as ``node_deleted`` keeps its ``node_id`` as a top-level field.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        if isinstance(record.msg, dict):
            fields = {k: v for k, v in record.msg.items() if k not in ("level", "timestamp")}
            entry["message"] = fields.pop("event", "")
            entry.update(fields)
        else:
            entry["message"] = record.getMessage()
        return json.dumps(entry, default=str)


def _console_handler(verbosity: int) -> RichHandler:
    level = _CONSOLE_LEVELS[verbosity] if verbosity < len(_CONSOLE_LEVELS) else logging.DEBUG
    return RichHandler(
        console=Console(stderr=True),
        level=level,
        markup=False,
        show_time=verbosity > 0,
        show_path=verbosity > 1,
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity > 1,
    )


def _events_handler(log_dir: Path) -> logging.FileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / EVENTS_FILE, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(FlowEventFormatter())
    return handler


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    log_dir: Path | None = None,
) -> None:
    """Install console (and optionally JSONL file) logging.

    Args:
        verbosity: 0 shows warnings only, 1 adds info, 2 or more adds debug.
        log_to_file: Append every event to ``log_dir / EVENTS_FILE``.
        log_dir: Target directory; required when ``log_to_file`` is set.

    Raises:
        ValueError: If ``log_to_file`` is set without ``log_dir``.
    """
    global _configured, _file_handler, _logs_dir

    if log_to_file and log_dir is None:
        raise ValueError("log_dir is required when log_to_file=True")

    close_file_logging()

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_to_file and log_dir is not None:
        _logs_dir = log_dir
        _file_handler = _events_handler(log_dir)
        handlers.append(_file_handler)
    else:
        _logs_dir = None

    # The root logger stays open whenever any handler wants more than warnings;
    # each handler applies its own threshold.
    root_level = logging.DEBUG if (verbosity or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Return a bound logger, installing the quiet default setup on first use."""
    if not _configured:
        configure_logging()
    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def get_logs_dir() -> Path | None:
    """Directory receiving the JSONL event log, or None when file logging is off."""
    return _logs_dir


def close_file_logging() -> None:
    global _file_handler
    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None
