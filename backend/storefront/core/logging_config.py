"""
Logging setup for the Storefront backend

Every record gets the id of the request that produced it, and anything that
looks like a payment or courier credential is masked before it is written.
Production writes one JSON object per line; other environments write text.

Usage:
    import logging
    from storefront.core.logging_config import setup_logging

    setup_logging()                        # once, at startup
    logger = logging.getLogger(__name__)   # per module
    logger.info("Checkout started", extra={"order_id": order_id})
"""

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from .config import settings

__all__ = [
    "setup_logging",
    "set_request_id",
    "get_request_id",
    "RequestIdFilter",
    "CredentialMaskingFilter",
    "JsonFormatter",
    "StandardFormatter",
]

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "request_id"}

# Razorpay keys, Basic/Token auth headers and signature fields
_CREDENTIAL_PATTERNS = (
    re.compile(r"\b(rzp_(?:live|test)_)[A-Za-z0-9]+"),
    re.compile(r"(?i)\b(authorization[\"']?\s*[:=]\s*[\"']?(?:basic|token|bearer)\s+)[^\s\"',}]+"),
    re.compile(r"(?i)\b((?:key_secret\w*|razorpay_signature|token)[\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+"),
)

# Chatty libraries; boto and httpx log every request at DEBUG
_QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "boto3", "botocore", "urllib3", "httpx", "httpcore")


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def mask_credentials(text: str) -> str:
    for pattern in _CREDENTIAL_PATTERNS:
        text = pattern.sub(lambda m: f"{m.group(1)}***", text)
    return text


class RequestIdFilter(logging.Filter):
    """Stamp each record with the current request id ("-" outside a request)"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


class CredentialMaskingFilter(logging.Filter):
    """
    Mask credentials in the rendered message.

    Gateway and courier errors are logged with the raw response body, which
    can echo back the request, so the mask runs on every record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_credentials(message)
        if masked != message:
            record.msg, record.args = masked, None
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for CloudWatch"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "service": settings.PROJECT_NAME,
            "environment": settings.ENVIRONMENT,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)8s] [%(request_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name; defaults to settings.LOG_LEVEL, then DEBUG
            outside production and INFO in it
        log_format: "json" or "text"; defaults to settings.LOG_FORMAT, then
            json in production and text elsewhere
    """
    is_production = settings.ENVIRONMENT == "production"
    level = (level or settings.LOG_LEVEL or ("INFO" if is_production else "DEBUG")).upper()
    log_format = (log_format or settings.LOG_FORMAT or ("json" if is_production else "text")).lower()

    log_level = logging.getLevelName(level)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(CredentialMaskingFilter())
    handler.setFormatter(JsonFormatter() if log_format == "json" else StandardFormatter())
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, format={log_format}, env={settings.ENVIRONMENT}")
