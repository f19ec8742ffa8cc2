"""Reconcile outcomes.

A reconcile step either finishes (``Done``), asks to be evaluated again later
without the resource being finalized (``RetryWithoutFinalizing``), or raises.
Raised exceptions are the fatal outcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..models import InfraMachine


@dataclass(frozen=True)
class Done:
    """The step finished; ``machine`` is the latest known copy."""

    machine: InfraMachine | None = None


@dataclass(frozen=True)
class RetryWithoutFinalizing:
    """Re-evaluate later. The finalizer must stay and no failure is reported."""

    reason: str = ""


ReconcileResult = Union[Done, RetryWithoutFinalizing]
