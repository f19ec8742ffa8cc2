"""Re-evaluation requests for infrastructure machines.

kopf re-runs event handlers whenever the watched object changes, so an
immediate re-evaluation is requested by bumping an annotation on the machine.
Delayed requests arm a timer per machine that performs the same bump.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone

from kubernetes import client

from ..constants import ANNOTATION_RECONCILE_AT
from ..models import GroupVersionKind
from ..utils.errors import is_not_found
from .kube import call_k8s

logger = logging.getLogger(__name__)


class KubeEnqueuer:
    """Requests re-evaluation by annotating the machine."""

    def __init__(self, api: client.CustomObjectsApi):
        self.api = api
        # key -> (monotonic due time, timer)
        self._timers: dict[tuple[GroupVersionKind, str, str], tuple[float, threading.Timer]] = {}
        self._lock = threading.Lock()

    def enqueue(self, gvk: GroupVersionKind, namespace: str, name: str) -> None:
        body = {
            "metadata": {
                "annotations": {ANNOTATION_RECONCILE_AT: datetime.now(timezone.utc).isoformat()},
            },
        }
        try:
            call_k8s(
                "enqueue_infra_machine",
                self.api.patch_namespaced_custom_object,
                group=gvk.group,
                version=gvk.version,
                namespace=namespace,
                plural=gvk.plural,
                name=name,
                body=body,
            )
        except client.exceptions.ApiException as e:
            if not is_not_found(e):
                raise
            logger.debug("Not enqueueing %s %s/%s, it no longer exists", gvk.kind, namespace, name)

    def enqueue_after(self, gvk: GroupVersionKind, namespace: str, name: str, delay: float) -> None:
        """Schedule ``enqueue`` after ``delay`` seconds.

        Requests for the same machine coalesce on the earliest due time: a later
        request is dropped, an earlier one replaces the pending timer.
        """
        key = (gvk, namespace, name)
        due = time.monotonic() + delay
        with self._lock:
            pending = self._timers.get(key)
            if pending is not None:
                if pending[0] <= due:
                    return
                pending[1].cancel()
            timer = threading.Timer(delay, self._fire, args=(key, due))
            timer.daemon = True
            self._timers[key] = (due, timer)
        timer.start()

    def _fire(self, key: tuple[GroupVersionKind, str, str], due: float) -> None:
        with self._lock:
            pending = self._timers.get(key)
            # A replaced timer may still fire if it was cancelled too late
            if pending is None or pending[0] != due:
                return
            del self._timers[key]
        gvk, namespace, name = key
        try:
            self.enqueue(gvk, namespace, name)
        except Exception as e:
            # Timer threads have no caller to propagate to
            logger.error("Failed to enqueue %s %s/%s: %s", gvk.kind, namespace, name, e)

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def cancel_all(self) -> None:
        """Cancel every pending delayed request."""
        with self._lock:
            timers = [timer for _, timer in self._timers.values()]
            self._timers.clear()
        for timer in timers:
            timer.cancel()
