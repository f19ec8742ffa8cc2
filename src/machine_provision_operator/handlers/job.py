"""Provisioning job handler."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import ERROR_RETRY_SECONDS, LABEL_INFRA_MACHINE_NAME
from ..provision.engine import job_owner
from ..utils.context import with_correlation_id
from ..utils.errors import ReconcileError
from .base import BaseHandler
from .shared import get_provisioner


class JobHandler(BaseHandler):
    """Translates provisioning job progress into machine status."""

    def __init__(self) -> None:
        super().__init__("Job")

    def on_failure(self, body: dict[str, Any], error: Exception) -> None:
        if isinstance(error, ReconcileError):
            return
        owner = job_owner(body)
        if owner is not None:
            gvk, namespace, name = owner
            get_provisioner().enqueuer.enqueue_after(gvk, namespace, name, ERROR_RETRY_SECONDS)

    def handle(self, body: dict[str, Any]) -> None:
        machine = self.reconcile_with_metrics(body, lambda: get_provisioner().on_job_change(body))
        if machine is not None:
            self.log_info(
                body,
                "Job status recorded on machine",
                event="job",
                reason="JobStatus",
                machine=machine.key,
                job_complete=machine.status.job_complete,
                failure_reason=machine.status.failure_reason,
            )


_handler = JobHandler()


@kopf.on.event("batch", "v1", "jobs", labels={LABEL_INFRA_MACHINE_NAME: kopf.PRESENT})
def handle_provision_job(event: dict[str, Any], body: kopf.Body, **kwargs: Any) -> None:
    """Handle provisioning job events."""
    if event.get("type") == "DELETED":
        return
    with with_correlation_id():
        _handler.handle(dict(body))
