"""
Central logging configuration for Investment Tracker.

- Logs go to stderr so command output on stdout stays clean.
- JSON logs when LOG_JSON=1, plain text otherwise.
- LOG_LEVEL from env (default INFO).
- Never log API keys; request parameters are logged without them.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any


def _json_serial(obj: Any):
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_serial)


def configure_logging(level_name: str | None = None) -> None:
    """Configure root logger: level from LOG_LEVEL, JSON format when LOG_JSON is set."""
    level_name = (level_name or os.getenv("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    use_json = os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")

    root = logging.getLogger()
    root.setLevel(level)
    # Avoid duplicate handlers when called twice
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
    root.addHandler(handler)

    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
