"""Reconcile error types and sanitization utilities."""

import re

from kubernetes.client.exceptions import ApiException


class ReconcileError(Exception):
    """A reconcile step failed in a way that must be surfaced, not retried blindly."""


class JobNotFinishedError(ReconcileError):
    """Teardown was requested before the create job finished."""


class InvalidResourceError(ReconcileError, ValueError):
    """A resource body could not be decoded."""


def is_not_found(error: BaseException) -> bool:
    """Check whether an exception is a Kubernetes 404."""
    return isinstance(error, ApiException) and error.status == 404


def is_conflict(error: BaseException) -> bool:
    """Check whether an exception is a Kubernetes 409."""
    return isinstance(error, ApiException) and error.status == 409


# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    r"token[:\s]+([A-Za-z0-9\-_\.]+)",
    r"client[_\-\s]?key[_\-\s]?data[:\s]+([A-Za-z0-9/+=]+)",
    r"client[_\-\s]?certificate[_\-\s]?data[:\s]+([A-Za-z0-9/+=]+)",
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "password",
    "secret",
    "credentials",
    "token",
    "kubeconfig",
    "sshkeycontents",
    "privatekeyfile",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, "[REDACTED]", sanitized, flags=re.IGNORECASE)

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"{field}[:=\s]+([^\s,;\)]+)",
            rf"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: BaseException) -> str:
    """Sanitize exception message."""
    return sanitize_error_message(str(error))
