import contextvars
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict

correlation_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None
)

request_metadata_context: contextvars.ContextVar[Dict[str, Any] | None] = contextvars.ContextVar(
    "request_metadata",
    default=None
)

# Structured fields services pass through ``extra={...}`` that make it into the JSON line
_EXTRA_FIELDS = (
    "notification_id",
    "recipient_id",
    "channel",
    "item_id",
    "alert_id",
    "alert_type",
    "escalation_level",
    "attempt",
    "status",
    "error",
)


class CorrelationFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = correlation_id_context.get()
        if correlation_id:
            record.correlation_id = correlation_id

        metadata = request_metadata_context.get()
        if metadata:
            record.request_method = metadata.get("method")
            record.request_path = metadata.get("path")

        return True


class JSONFormatter(logging.Formatter):
    _patterns = [
        # API keys and tokens
        (r'(["\']?(?:api[_-]?)?(?:key|token|secret|password)["\']?\s*[:=]\s*["\']?)([^"\'\s,]+)(["\']?)',
         r'\1***REDACTED***\3'),
        # Bearer tokens
        (r'(Bearer\s+)([A-Za-z0-9\-_.]+)', r'\1***REDACTED***'),
        # MongoDB URLs with credentials
        (r'(mongodb(?:\+srv)?://[^:]+:)([^@]+)(@)', r'\1***REDACTED***\3'),
        # Recipient addresses are PHI
        (r'([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})', r'***EMAIL_REDACTED***'),
        (r'(\+\d{7,15})', r'***PHONE_REDACTED***'),
    ]

    def _sanitize_sensitive_data(self, data: str) -> str:
        """Mask credentials and recipient contact details."""
        for pattern, replacement in self._patterns:
            data = re.sub(pattern, replacement, data, flags=re.IGNORECASE)
        return data

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self._sanitize_sensitive_data(record.getMessage()),
        }

        for attr in ("correlation_id", "request_method", "request_path"):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        for attr in _EXTRA_FIELDS:
            if hasattr(record, attr):
                log_data[attr] = self._sanitize_sensitive_data(str(getattr(record, attr)))

        if record.exc_info:
            exc_text = self.formatException(record.exc_info)
            log_data["exc_info"] = self._sanitize_sensitive_data(exc_text)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logger(log_level: str) -> logging.Logger:
    logger = logging.getLogger("carenotify")
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(JSONFormatter())
    console_handler.addFilter(CorrelationFilter())
    logger.addHandler(console_handler)

    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.propagate = False

    return logger
