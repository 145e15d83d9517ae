"""
Logging configuration.

Human-readable lines on a developer machine, one JSON object per line
everywhere else so the log pipeline can filter on Stripe event ids and
user ids without parsing messages.
"""

import json
import logging
import sys

from realty_billing.config.config import Config

logger = logging.getLogger(__name__)

# Attributes billing code attaches with ``logger.*(..., extra={...})``
_STRUCTURED_FIELDS = ("user_id", "event_id", "event_type", "customer_id", "subscription_id")

_DEV_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "stripe")


class StructuredFormatter(logging.Formatter):
    """Render a record as a JSON line, including any billing ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field))
            for field in _STRUCTURED_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    """Install a single stdout handler on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(_DEV_FORMAT) if Config.IS_DEVELOPMENT else StructuredFormatter()
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging configured (env=%s)", Config.APP_ENV)
