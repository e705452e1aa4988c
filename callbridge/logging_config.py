"""
Structured logging configuration using structlog.
Produces JSON lines for machine parsing and pretty console output for dev.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog


def setup_logging(log_dir: Path | None = None, json_logs: bool = True, level: int = logging.INFO) -> None:
    """
    Configure structlog + stdlib logging.

    Parameters
    ----------
    log_dir : Path | None
        Directory for the JSON-lines log file. ``None`` logs to stdout only.
    json_logs : bool
        Render JSON when True, coloured key/value pairs otherwise.
    level : int
        Minimum level for both stdlib and structlog loggers.
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Reconfiguring must not stack handlers (CLI commands call this per run)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    root.addHandler(console)

    if log_dir is not None and json_logs:
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / "callbridge.jsonl", encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        root.addHandler(fh)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
