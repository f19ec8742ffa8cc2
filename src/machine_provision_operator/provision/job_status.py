"""Derive machine status from a provisioning job and its pods."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from .. import metrics
from ..constants import CREATE_MACHINE_ERROR, DELETE_MACHINE_ERROR
from ..models import MachineStatus


def label_selector_to_string(selector: dict[str, Any] | None) -> str:
    """Render a LabelSelector (matchLabels and matchExpressions) as a selector string."""
    if not selector:
        return ""

    terms = [f"{k}={v}" for k, v in sorted((selector.get("matchLabels") or {}).items())]
    for expr in selector.get("matchExpressions") or []:
        key = expr["key"]
        operator = expr["operator"]
        values = ",".join(expr.get("values") or [])
        if operator == "In":
            terms.append(f"{key} in ({values})")
        elif operator == "NotIn":
            terms.append(f"{key} notin ({values})")
        elif operator == "Exists":
            terms.append(key)
        elif operator == "DoesNotExist":
            terms.append(f"!{key}")
        else:
            raise ValueError(f"unsupported label selector operator {operator!r}")
    return ",".join(terms)


def is_create_job(job: dict[str, Any]) -> bool:
    """Create jobs never retry; delete jobs carry a backoff limit."""
    backoff_limit = (job.get("spec") or {}).get("backoffLimit")
    return backoff_limit is None or backoff_limit == 0


def job_failed(job: dict[str, Any]) -> bool:
    for condition in (job.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Failed" and condition.get("status") == "True":
            return True
    return False


def _creation_time(pod: dict[str, Any]) -> datetime:
    timestamp = (pod.get("metadata") or {}).get("creationTimestamp")
    if not timestamp:
        return datetime.min
    if isinstance(timestamp, datetime):
        return timestamp.replace(tzinfo=None)
    return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).replace(tzinfo=None)


def latest_pod(pods: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Most recently created pod; the first one wins on a tie."""
    last = None
    for pod in pods:
        if last is None or _creation_time(pod) > _creation_time(last):
            last = pod
    return last


def machine_status_from_pod(pod: dict[str, Any], create: bool) -> MachineStatus:
    """Summarize a finished pod.

    The failure message is read from the first container status, whichever
    container actually failed.
    """
    pod_status = pod.get("status") or {}
    if pod_status.get("phase") == "Succeeded":
        return MachineStatus(job_complete=True)

    container_statuses = pod_status.get("containerStatuses") or []
    for container_status in container_statuses:
        terminated = (container_status.get("state") or {}).get("terminated")
        if terminated and terminated.get("exitCode", 0) != 0:
            first = (container_statuses[0].get("state") or {}).get("terminated") or {}
            return MachineStatus(
                failure_reason=CREATE_MACHINE_ERROR if create else DELETE_MACHINE_ERROR,
                failure_message=(first.get("message") or "").strip(),
            )

    return MachineStatus()


def get_machine_status(job: dict[str, Any], pods: Any, create: bool) -> MachineStatus:
    """Translate a provisioning job into a machine status summary.

    Args:
        job: Job body
        pods: Pod store used to list the job's pods when it failed
        create: Whether the job performs the create action

    Returns:
        The summary, always carrying the job name. An empty summary means the
        job is still pending.
    """
    metadata = job.get("metadata") or {}
    action = "create" if create else "delete"

    if (job.get("status") or {}).get("completionTime"):
        status = MachineStatus(job_complete=True)
    elif job_failed(job):
        selector = label_selector_to_string((job.get("spec") or {}).get("selector"))
        pod = latest_pod(pods.list(metadata.get("namespace", ""), selector))
        status = machine_status_from_pod(pod, create) if pod is not None else MachineStatus()
    else:
        status = MachineStatus()

    if status.job_complete:
        outcome = "complete"
    elif status.failure_reason:
        outcome = "failed"
    else:
        outcome = "pending"
    metrics.job_status_total.labels(action=action, outcome=outcome).inc()

    status.job_name = metadata.get("name", "")
    return status
