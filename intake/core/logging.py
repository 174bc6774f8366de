import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from intake.core.context import get_client_ip, get_request_id
from intake.core.settings import settings

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "request_id",
    "client_ip",
    "channel",
}

# Identifiers operators grep for get their own top-level key.
_PROMOTED = ("submission_id", "connection_id", "local_id")

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"


class RequestContextFilter(logging.Filter):
    """Attach the current request id and client ip to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.client_ip = get_client_ip()
        return True


class JsonFormatter(logging.Formatter):
    def __init__(self, channel: str = "app") -> None:
        super().__init__()
        self.channel = channel

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "channel": self.channel,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "client_ip": getattr(record, "client_ip", "-"),
        }
        extras = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        for key in _PROMOTED:
            if key in extras:
                payload[key] = extras.pop(key)
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def _formatters(log_format: str) -> dict:
    if log_format == "text":
        text = {"format": _TEXT_FORMAT}
        return {"default": text, "audit": text}
    return {
        "default": {"()": JsonFormatter, "channel": "app"},
        "audit": {"()": JsonFormatter, "channel": "audit"},
    }


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    fmt = (log_format or settings.log_format).lower()

    def handler(formatter: str) -> dict:
        return {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter,
            "filters": ["request_context"],
            "stream": "ext://sys.stdout",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": _formatters(fmt),
            "handlers": {"default": handler("default"), "audit": handler("audit")},
            "loggers": {
                "": {"handlers": ["default"], "level": log_level, "propagate": False},
                "intake.audit": {"handlers": ["audit"], "level": log_level, "propagate": False},
                "uvicorn": {"handlers": ["default"], "level": log_level, "propagate": False},
                "uvicorn.error": {"handlers": ["default"], "level": log_level, "propagate": False},
                "uvicorn.access": {"handlers": ["default"], "level": log_level, "propagate": False},
                "sqlalchemy.engine": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s data_dir=%s remote_store=%s",
        settings.environment,
        settings.data_dir,
        "enabled" if settings.remote_store_enabled else "disabled",
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger("intake.audit")
