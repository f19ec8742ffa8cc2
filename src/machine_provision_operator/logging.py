"""Structured logging configuration for the Machine Provision Operator."""

import json
import logging
import sys
from typing import Any

from .utils.context import get_context_dict

# Log fields that may carry driver credentials, kubeconfigs or bootstrap data
SECRET_FIELDS = frozenset({
    "kubeconfig",
    "token",
    "password",
    "ssh_key",
    "user_data",
    "bootstrap_data",
    "files",
})
REDACTED = "***REDACTED***"


class JsonFormatter(logging.Formatter):
    """Render records as JSON; messages that already are JSON objects are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
        }
        message = record.getMessage()
        try:
            payload = json.loads(message)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            entry.update(payload)
        else:
            entry["message"] = message
            entry.update(get_context_dict())
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_structured_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


def log_resource_event(
    logger: logging.Logger,
    controller: str,
    resource_kind: str,
    resource_name: str,
    namespace: str,
    uid: str,
    event: str,
    reason: str,
    message: str,
    level: int = logging.INFO,
    **kwargs: Any,
) -> None:
    """Log a structured resource event."""
    log_data = {
        "controller": controller,
        "resource": resource_kind,
        "name": resource_name,
        "namespace": namespace,
        "uid": uid,
        "event": event,
        "reason": reason,
        "message": message,
    }
    log_data.update(get_context_dict(kwargs))
    logger.log(level, json.dumps(sanitize_secrets(log_data), default=str))


def sanitize_secrets(log_data: dict[str, Any]) -> dict[str, Any]:
    """Redact secret fields, including inside nested mappings."""
    sanitized: dict[str, Any] = {}
    for key, value in log_data.items():
        if key in SECRET_FIELDS:
            sanitized[key] = REDACTED
        elif isinstance(value, dict):
            sanitized[key] = sanitize_secrets(value)
        else:
            sanitized[key] = value
    return sanitized
