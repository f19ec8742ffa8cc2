"""Per-reconcile context carried into every log line."""

from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)
# "<kind> <namespace>/<name>" of the object being reconciled
reconcile_target: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "reconcile_target", default=None
)


def get_correlation_id() -> str | None:
    return correlation_id.get()


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:16]


@contextmanager
def with_correlation_id(
    corr_id: str | None = None,
    target: str | None = None,
) -> Iterator[str]:
    """Bind a correlation ID, and optionally the reconciled object, to a block.

    Args:
        corr_id: Correlation ID to use, a new one is generated when omitted
        target: Object being reconciled, e.g. "Amazonec2Machine fleet-default/m1"

    Yields:
        The correlation ID
    """
    corr_id = corr_id or new_correlation_id()
    corr_token = correlation_id.set(corr_id)
    target_token = reconcile_target.set(target) if target else None
    try:
        yield corr_id
    finally:
        if target_token is not None:
            reconcile_target.reset(target_token)
        correlation_id.reset(corr_token)


def get_context_dict(additional: dict[str, Any] | None = None) -> dict[str, Any]:
    """Context values of the current reconcile merged with ``additional``."""
    ctx: dict[str, Any] = {}
    corr_id = get_correlation_id()
    if corr_id:
        ctx["correlation_id"] = corr_id
    target = reconcile_target.get()
    if target:
        ctx["target"] = target
    if additional:
        ctx.update(additional)
    return ctx
