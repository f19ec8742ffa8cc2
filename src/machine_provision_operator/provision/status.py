"""Idempotent status and condition writes for infrastructure machines."""

from __future__ import annotations

import logging
from typing import Any

from .. import metrics
from ..models import InfraMachine, MachineStatus
from ..utils.conditions import condition_from_error, update_condition

logger = logging.getLogger(__name__)


def to_status_string(value: Any) -> str:
    """String form used to compare stored and desired status values."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class StatusPatcher:
    """Writes derived status and conditions, skipping writes that change nothing.

    Both operations run on every reconcile pass; a write that does not change
    anything would trigger another pass and loop forever.
    """

    def __init__(self, machines: Any):
        """Initialize patcher.

        Args:
            machines: InfraMachineStore used to re-fetch and persist machines
        """
        self.machines = machines

    def patch_status(self, machine: InfraMachine, desired: MachineStatus) -> InfraMachine:
        """Merge desired status fields into the machine's status.

        A complete job clears failure fields that the desired status does not set.

        Returns:
            The updated machine, or ``machine`` itself when nothing changed
        """
        status_data = desired.to_map()
        if desired.job_complete:
            status_data.setdefault("failureMessage", "")
            status_data.setdefault("failureReason", "")

        current = machine.raw_status
        changed = any(
            to_status_string(current.get(key)) != to_status_string(value)
            for key, value in status_data.items()
        )
        if not changed:
            metrics.status_write_total.labels(target="status", result="skipped").inc()
            return machine

        fresh = self.machines.get(machine.gvk, machine.namespace, machine.name)
        body = fresh.to_body()
        status = body.get("status")
        if not isinstance(status, dict):
            status = {}
            body["status"] = status
        status.update(status_data)

        logger.debug("Updating status of %s %s: %s", machine.kind, machine.key, sorted(status_data))
        updated = self.machines.update_status(body)
        metrics.status_write_total.labels(target="status", result="written").inc()
        return updated

    def set_condition(
        self,
        machine: InfraMachine,
        condition_type: str,
        error: BaseException | None = None,
    ) -> InfraMachine:
        """Record a reconcile outcome as a condition.

        Args:
            machine: Machine to update
            condition_type: Condition type, e.g. "CreateJob"
            error: The fatal error, or None when the step succeeded or is retrying

        Returns:
            The updated machine, or ``machine`` itself when the condition is unchanged
        """
        desired = condition_from_error(condition_type, error)
        if machine.get_condition(condition_type) == desired:
            metrics.status_write_total.labels(target="condition", result="skipped").inc()
            return machine

        fresh = self.machines.get(machine.gvk, machine.namespace, machine.name)
        body = fresh.to_body()
        status = body.get("status")
        if not isinstance(status, dict):
            status = {}
            body["status"] = status
        status["conditions"] = update_condition(
            list(status.get("conditions") or []),
            desired.type,
            desired.status,
            desired.reason,
            desired.message,
        )

        updated = self.machines.update_status(body)
        metrics.status_write_total.labels(target="condition", result="written").inc()
        return updated
