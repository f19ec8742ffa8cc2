"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import REASON_ERROR
from ..models import Condition


def condition_from_error(condition_type: str, error: BaseException | None) -> Condition:
    """Build the condition reporting a reconcile outcome.

    No error means the step succeeded (or is waiting to retry); an error is
    reported as status False with reason "Error".
    """
    if error is None:
        return Condition(type=condition_type, status="True")
    return Condition(type=condition_type, status="False", reason=REASON_ERROR, message=str(error))


def find_condition(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def condition_is(conditions: list[dict[str, Any]], condition_type: str, status: str) -> bool:
    cond = find_condition(conditions, condition_type)
    return cond is not None and cond.get("status") == status


def condition_reason(conditions: list[dict[str, Any]], condition_type: str) -> str:
    cond = find_condition(conditions, condition_type)
    return (cond or {}).get("reason") or ""


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).isoformat()

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }

    for idx, existing in enumerate(conditions):
        if existing.get("type") == condition_type:
            # Only update lastTransitionTime if status changed
            if existing.get("status") == status:
                new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
            conditions[idx] = new_condition
            return conditions

    conditions.append(new_condition)
    return conditions
