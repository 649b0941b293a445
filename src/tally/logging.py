"""Structured logging configuration."""

import json
import logging
from datetime import UTC, datetime

from tally.config import LogFormat, Settings, get_settings

# LogRecord attributes passed through ``extra=`` that the JSON output keeps.
CONTEXT_FIELDS = ("dimension", "key", "attempts")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with summary context when it was supplied."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["error"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": self.formatException(record.exc_info),
            }
        return json.dumps(log_entry, default=str)


def configure_logging(
    *,
    log_format: str | None = None,
    debug: bool | None = None,
    settings: Settings | None = None,
) -> None:
    """Install a single stream handler on the root logger.

    Explicit arguments win over ``TALLY_LOG_FORMAT`` / ``TALLY_DEBUG``.
    """
    settings = settings or get_settings()
    log_format = log_format or settings.log_format
    debug = settings.debug if debug is None else debug

    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicates.
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if log_format == LogFormat.JSON:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root.addHandler(handler)
