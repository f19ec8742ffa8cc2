"""Infrastructure machine handler."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import API_GROUP_VERSION, ERROR_RETRY_SECONDS, FINALIZER, KIND_RESERVED, KIND_SUFFIX
from ..models import GroupVersionKind, InfraMachine
from ..provision.result import Done
from ..utils.context import with_correlation_id
from ..utils.errors import ReconcileError
from ..utils.events import emit_job_applied, emit_reconcile_started, emit_teardown_complete
from .base import BaseHandler
from .shared import get_provisioner


def is_infra_machine_kind(body: dict[str, Any], **_: Any) -> bool:
    """Filter for infrastructure machine kinds; templates and custom machines are not provisioned."""
    kind = body.get("kind") or ""
    return kind.endswith(KIND_SUFFIX) and kind != KIND_RESERVED


class MachineHandler(BaseHandler):
    """Handler for infrastructure machines of every driver kind."""

    def __init__(self) -> None:
        super().__init__("InfraMachine")

    def on_failure(self, body: dict[str, Any], error: Exception) -> None:
        # Domain errors need a change to the machine; anything else is retried
        if isinstance(error, ReconcileError):
            return
        meta = body.get("metadata") or {}
        gvk = GroupVersionKind.from_api_version(body.get("apiVersion", ""), body.get("kind", ""))
        get_provisioner().enqueuer.enqueue_after(
            gvk, meta.get("namespace", ""), meta.get("name", ""), ERROR_RETRY_SECONDS
        )

    def handle(self, body: dict[str, Any], meta: dict[str, Any], patch: kopf.Patch) -> None:
        """Reconcile one observed state of a machine."""
        provisioner = get_provisioner()

        # Decoding runs inside the metered step so an invalid body is reported as its failure
        if meta.get("deletionTimestamp"):
            if FINALIZER not in (meta.get("finalizers") or []):
                return
            result = self.reconcile_with_metrics(body, lambda: provisioner.on_remove(InfraMachine.from_body(body)))
            if isinstance(result, Done):
                self.remove_finalizer(meta, patch)
                self.log_info(body, "Machine torn down", event="delete", reason="TeardownComplete")
                emit_teardown_complete(body)
            else:
                self.log_info(body, result.reason, event="delete", reason="TeardownWaiting")
            return

        if self.ensure_finalizer(meta, patch):
            self.log_info(body, "Reconciliation started", event="reconcile", reason="ReconcileStarted")
            emit_reconcile_started(body)

        previous_job = (body.get("status") or {}).get("jobName") or ""
        updated = self.reconcile_with_metrics(body, lambda: provisioner.on_change(InfraMachine.from_body(body)))
        if updated.status.job_name and updated.status.job_name != previous_job:
            emit_job_applied(body, updated.status.job_name)


_handler = MachineHandler()


@kopf.on.event(API_GROUP_VERSION, kopf.EVERYTHING, when=is_infra_machine_kind)
def handle_infra_machine(
    event: dict[str, Any],
    body: kopf.Body,
    meta: dict[str, Any],
    patch: kopf.Patch,
    **kwargs: Any,
) -> None:
    """Handle infrastructure machine events."""
    if event.get("type") == "DELETED":
        return
    with with_correlation_id():
        _handler.handle(dict(body), meta, patch)
