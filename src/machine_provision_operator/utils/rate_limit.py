"""Rate limiting utilities for Kubernetes API calls."""

from __future__ import annotations

import os
import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from kubernetes.client.exceptions import ApiException

from .. import metrics

_F = TypeVar("_F", bound=Callable[..., Any])

# Rate limit configuration
_K8S_RATE_LIMIT_PER_SECOND = float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "10.0"))
_MAX_RATE_LIMIT_RETRIES = int(os.getenv("K8S_RATE_LIMIT_MAX_RETRIES", "3"))

# Track last call time across worker threads
_k8s_last_call_time: float = 0.0
_k8s_lock = threading.Lock()


def rate_limit_k8s(func: _F) -> _F:
    """Decorator to rate limit Kubernetes API calls.

    Spaces calls at least 1/K8S_RATE_LIMIT_PER_SECOND apart so that a burst of
    requeued machines does not overwhelm the API server.
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        global _k8s_last_call_time
        min_interval = 1.0 / _K8S_RATE_LIMIT_PER_SECOND

        with _k8s_lock:
            time_since_last_call = time.time() - _k8s_last_call_time
            if time_since_last_call < min_interval:
                time.sleep(min_interval - time_since_last_call)
            _k8s_last_call_time = time.time()

        return func(*args, **kwargs)

    return wrapper  # type: ignore


def is_rate_limit_error(e: BaseException) -> bool:
    """Check if an exception is a Kubernetes API throttling response."""
    if not isinstance(e, ApiException):
        return False
    return e.status == 429 or (e.status == 503 and "rate limit" in str(e).lower())


def call_with_rate_limit_retry(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call a Kubernetes API method, backing off on throttling responses.

    Exponential backoff of 1s, 2s, 4s up to K8S_RATE_LIMIT_MAX_RETRIES; any other
    error, or the last throttling error, propagates.
    """
    limited = rate_limit_k8s(func)
    attempt = 0
    while True:
        try:
            return limited(*args, **kwargs)
        except ApiException as e:
            if not is_rate_limit_error(e) or attempt >= _MAX_RATE_LIMIT_RETRIES:
                raise
            metrics.rate_limit_hits_total.labels(api_type="k8s").inc()
            time.sleep(2 ** attempt)
            attempt += 1
