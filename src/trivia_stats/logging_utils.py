"""Logging setup for the trivia_stats CLI and workers."""

from __future__ import annotations

import logging
import os
from pathlib import Path


class ArchivalFilter(logging.Filter):
    """Keep archival records (and anything WARNING or louder) for the audit log file."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if record.levelno >= logging.WARNING:
            return True
        return record.name.startswith("trivia_stats.archival")


def configure_logging(level: int = logging.INFO, log_path: str | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    override = (os.getenv("TRIVIA_STATS_LOG_LEVEL") or "").strip().upper()
    if override:
        level = logging.getLevelName(override) if isinstance(logging.getLevelName(override), int) else level
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        audit_handler = logging.FileHandler(path, encoding="utf-8")
        audit_handler.addFilter(ArchivalFilter())
        handlers.append(audit_handler)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
