"""Base handler class with common functionality for all handlers."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

import kopf

from .. import metrics
from ..constants import CONTROLLER_NAME, FINALIZER
from ..logging import log_resource_event
from ..utils.context import get_correlation_id, with_correlation_id
from ..utils.errors import sanitize_exception
from ..utils.events import emit_reconcile_failed

_T = TypeVar("_T")


class BaseHandler:
    """Base class for handlers with common functionality."""

    def __init__(self, kind: str):
        """Initialize base handler.

        Args:
            kind: Metrics label for the handled resources (e.g., "InfraMachine", "Job")
        """
        self.kind = kind
        self.logger = logging.getLogger(__name__)

    def _get_resource_context(self, body: dict[str, Any]) -> dict[str, Any]:
        """Extract common resource context from a resource body.

        Args:
            body: Kubernetes resource body

        Returns:
            Dictionary with resource context fields
        """
        meta = body.get("metadata") or {}
        return {
            "kind": body.get("kind") or self.kind,
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", "default"),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(
        self,
        level: int,
        body: dict[str, Any],
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        ctx = self._get_resource_context(body)
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=ctx["kind"],
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_info(
        self,
        body: dict[str, Any],
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log at INFO with the resource identity and current reconcile context."""
        self._log(logging.INFO, body, message, event, reason, **kwargs)

    def log_warning(
        self,
        body: dict[str, Any],
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        self._log(logging.WARNING, body, message, event, reason, **kwargs)

    def log_error(
        self,
        body: dict[str, Any],
        message: str,
        error: BaseException | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            body: Kubernetes resource body
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()
        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__
        self._log(logging.ERROR, body, message, event, reason, **log_data)

    def ensure_finalizer(self, meta: dict[str, Any], patch: kopf.Patch) -> bool:
        """Ensure finalizer is present in metadata.

        Returns:
            True if the finalizer was added by this call
        """
        finalizers = list(meta.get("finalizers") or [])
        if FINALIZER in finalizers:
            return False
        finalizers.append(FINALIZER)
        patch.metadata["finalizers"] = finalizers
        return True

    def remove_finalizer(self, meta: dict[str, Any], patch: kopf.Patch) -> None:
        """Remove finalizer from metadata."""
        finalizers = list(meta.get("finalizers") or [])
        if FINALIZER in finalizers:
            finalizers.remove(FINALIZER)
            patch.metadata["finalizers"] = finalizers if finalizers else None

    def on_failure(self, body: dict[str, Any], error: Exception) -> None:
        """Hook run after a failed reconcile has been logged; subclasses schedule retries here."""

    def reconcile_with_metrics(
        self,
        body: dict[str, Any],
        reconcile_fn: Callable[[], _T],
    ) -> _T:
        """Execute reconciliation with metrics, correlation and error handling.

        Args:
            body: Kubernetes resource body
            reconcile_fn: Function to execute for reconciliation

        Returns:
            Whatever ``reconcile_fn`` returns

        Raises:
            Exception: The reconcile error, after it has been logged and reported
        """
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()

        start_time = time.time()
        ctx = self._get_resource_context(body)
        target = f"{ctx['kind']} {ctx['namespace']}/{ctx['name']}"
        # Steps of one event share the correlation ID bound by the event handler
        with with_correlation_id(get_correlation_id(), target=target):
            try:
                result = reconcile_fn()
                metrics.reconcile_total.labels(kind=self.kind, result="success").inc()
                return result
            except Exception as e:
                sanitized_error = sanitize_exception(e)
                metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
                metrics.reconcile_total.labels(kind=self.kind, result="error").inc()
                self.log_error(body, "Reconciliation failed", error=e, reason="ReconciliationFailed")
                emit_reconcile_failed(body, f"Reconciliation failed: {sanitized_error}")
                self.on_failure(body, e)
                raise
            finally:
                duration = time.time() - start_time
                metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(duration)
