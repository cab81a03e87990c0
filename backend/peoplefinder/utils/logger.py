"""JSON logging for the peoplefinder logger.

Anything passed through ``extra=`` ends up as a top-level key of the log line:

    logger.warning("Admin access denied", extra={"email": email, "path": path})
"""
import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict

LOGGER_NAME = "peoplefinder"

# Attributes every LogRecord carries; everything else came from ``extra``
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; warnings and above also carry their source location"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.module}:{record.lineno}"

        entry.update({k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Route the application logger to stdout as JSON, replacing earlier handlers"""
    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(log_level.upper())
    app_logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    app_logger.handlers = [handler]

    return app_logger


logger = setup_logging()
