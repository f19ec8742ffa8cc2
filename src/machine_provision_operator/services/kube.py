"""Kubernetes-backed stores used by the provisioner."""

from __future__ import annotations

import time
from typing import Any, Callable

from kubernetes import client

from .. import metrics
from ..constants import (
    CAPI_GROUP,
    CAPI_VERSION,
    PROVISIONING_GROUP,
    PROVISIONING_VERSION,
)
from ..models import GroupVersionKind, InfraMachine
from ..utils.cache import get_or_load, make_cache_key
from ..utils.rate_limit import call_with_rate_limit_retry


def call_k8s(operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
    """Call a Kubernetes API method with rate limiting and API metrics."""
    start_time = time.time()
    try:
        result = call_with_rate_limit_retry(func, **kwargs)
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result="success").inc()
        return result
    except Exception:
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result="error").inc()
        raise
    finally:
        duration = time.time() - start_time
        metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(duration)


def cached_k8s(kind: str, namespace: str, name: str, operation: str, loader: Callable[[], Any]) -> Any:
    """Serve a read from the TTL cache, loading it through ``call_k8s`` on a miss."""
    obj, hit = get_or_load(make_cache_key(kind, namespace, name), loader)
    if hit:
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result="cache_hit").inc()
    return obj


def to_dict(api_client: client.ApiClient, obj: Any) -> dict[str, Any]:
    """Convert a typed client model to its camelCase API form."""
    return api_client.sanitize_for_serialization(obj)


class KubeInfraMachineStore:
    """Infrastructure machines through the custom objects API."""

    def __init__(self, api: client.CustomObjectsApi):
        self.api = api

    def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> InfraMachine:
        body = call_k8s(
            "get_infra_machine",
            self.api.get_namespaced_custom_object,
            group=gvk.group,
            version=gvk.version,
            namespace=namespace,
            plural=gvk.plural,
            name=name,
        )
        return InfraMachine.from_body(body)

    def update_status(self, body: dict[str, Any]) -> InfraMachine:
        gvk = GroupVersionKind.from_api_version(body["apiVersion"], body["kind"])
        metadata = body["metadata"]
        updated = call_k8s(
            "update_infra_machine_status",
            self.api.replace_namespaced_custom_object_status,
            group=gvk.group,
            version=gvk.version,
            namespace=metadata["namespace"],
            plural=gvk.plural,
            name=metadata["name"],
            body=body,
        )
        return InfraMachine.from_body(updated)


class KubeJobStore:
    def __init__(self, api: client.BatchV1Api):
        self.api = api

    def get(self, namespace: str, name: str) -> dict[str, Any]:
        job = call_k8s("get_job", self.api.read_namespaced_job, name=name, namespace=namespace)
        return to_dict(self.api.api_client, job)


class KubePodStore:
    def __init__(self, api: client.CoreV1Api):
        self.api = api

    def list(self, namespace: str, label_selector: str) -> list[dict[str, Any]]:
        pods = call_k8s("list_pods", self.api.list_namespaced_pod, namespace=namespace, label_selector=label_selector)
        return [to_dict(self.api.api_client, pod) for pod in pods.items]


class KubeNamespaceStore:
    """Namespaces, cached: only the deletion marker is consulted."""

    def __init__(self, api: client.CoreV1Api):
        self.api = api

    def get(self, name: str) -> dict[str, Any]:
        return cached_k8s(
            "Namespace",
            "",
            name,
            "get_namespace",
            lambda: to_dict(self.api.api_client, call_k8s("get_namespace", self.api.read_namespace, name=name)),
        )


class KubeMachineStore:
    """Cluster API machines. Not cached: drain state must be current."""

    def __init__(self, api: client.CustomObjectsApi):
        self.api = api

    def get(self, namespace: str, name: str) -> dict[str, Any]:
        return call_k8s(
            "get_capi_machine",
            self.api.get_namespaced_custom_object,
            group=CAPI_GROUP,
            version=CAPI_VERSION,
            namespace=namespace,
            plural="machines",
            name=name,
        )


class KubeClusterStore:
    """Provisioning clusters, cached."""

    def __init__(self, api: client.CustomObjectsApi):
        self.api = api

    def get(self, namespace: str, name: str) -> dict[str, Any]:
        return cached_k8s(
            "Cluster",
            namespace,
            name,
            "get_cluster",
            lambda: call_k8s(
                "get_cluster",
                self.api.get_namespaced_custom_object,
                group=PROVISIONING_GROUP,
                version=PROVISIONING_VERSION,
                namespace=namespace,
                plural="clusters",
                name=name,
            ),
        )
