"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_JOB_APPLIED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_TEARDOWN_COMPLETE,
)


def emit_event(
    body: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: Body of the involved object
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        body,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_reconcile_started(body: dict[str, Any]) -> None:
    emit_event(body, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(body: dict[str, Any], message: str) -> None:
    emit_event(body, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_job_applied(body: dict[str, Any], job_name: str) -> None:
    emit_event(body, EVENT_REASON_JOB_APPLIED, f"Provisioning job {job_name} applied")


def emit_teardown_complete(body: dict[str, Any]) -> None:
    emit_event(body, EVENT_REASON_TEARDOWN_COMPLETE, "Owned objects removed, finalizer released")
