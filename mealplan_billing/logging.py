import json
import logging
import logging.config
from datetime import datetime, timezone

_EXTRA_KEYS = (
    "request_id",
    "path",
    "method",
    "status",
    "duration_ms",
    "stage",
    "retryable",
    "customer_id",
    "subscription_id",
    "event_id",
    "event_type",
)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JsonLogFormatter,
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            }
        },
        "loggers": {
            # The SDK logs every request at INFO when STRIPE_LOG is set.
            "stripe": {"level": "WARNING"},
        },
        "root": {"handlers": ["default"], "level": level},
    }
    logging.config.dictConfig(logging_config)
