"""
Structured logging for sync cycles.

Sync runs in the background with no UI attached, so its logs are the main
way to follow a cycle. Every line logged during a cycle carries the cycle's
id, and the club being reconciled when there is one:

    {"timestamp": "...", "level": "INFO", "logger": "presence_sync.sync.engine",
     "message": "Merged 3 remote changes for club ...", "cycle_id": "ab12cd34",
     "club_id": "..."}
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

PACKAGE_LOGGER = "presence_sync"

# Context stamped by SyncLoggerAdapter, emitted right after the message
SYNC_CONTEXT_FIELDS = ("cycle_id", "club_id")

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per line.

    Fixed fields come first (timestamp of the record, level, logger,
    message), then the sync context, then any other ``extra`` values.
    Values JSON cannot encode are written as strings.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in SYNC_CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
            and key not in SYNC_CONTEXT_FIELDS
            and not key.startswith("_")
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_structured_logging(
    level: int = logging.INFO, stream: TextIO | None = None
) -> logging.Logger:
    """Write presence_sync logs as JSON lines to stream (stdout by default).

    Only the package logger is configured. Calling this again replaces the
    JSON handler installed earlier instead of adding a second one.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if isinstance(handler.formatter, StructuredJsonFormatter):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Stamps cycle (and club) context onto every record.

    Context given per call through ``extra`` takes precedence over the
    adapter's own.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def for_club(self, club_id: str) -> "SyncLoggerAdapter":
        return SyncLoggerAdapter(self.logger, {**self.extra, "club_id": club_id})
