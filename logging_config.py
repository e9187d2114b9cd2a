"""JSON logging for the storefront API.

Serverless platforms collect stdout, so only a console handler is installed.
Records carry timestamp, level, module and message, plus any ``request_id``,
``user_id`` or ``extra`` dict passed through ``logger.*(..., extra=...)``.
"""

import json
import logging
from datetime import datetime, timezone


class JsonFormatter(logging.Formatter):
    """Format log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.module,
            "message": record.getMessage(),
        }
        if hasattr(record, "request_id"):
            log_record["request_id"] = getattr(record, "request_id")
        if hasattr(record, "user_id"):
            log_record["user_id"] = getattr(record, "user_id")
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            log_record.update(extra)
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Install the JSON console handler on the root logger.

    Calling it again replaces the handler rather than stacking a second one.
    """
    logger = logging.getLogger()
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if getattr(handler, "_storefront", False):
            logger.removeHandler(handler)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(JsonFormatter())
    console_handler._storefront = True  # type: ignore[attr-defined]
    logger.addHandler(console_handler)
