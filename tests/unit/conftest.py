"""Shared fixtures for unit tests."""

from __future__ import annotations

import copy
from typing import Any
from unittest.mock import Mock

import pytest
from kubernetes.client.exceptions import ApiException

from machine_provision_operator.models import GroupVersionKind, InfraMachine


def machine_body(
    name: str = "m1",
    namespace: str = "fleet-default",
    kind: str = "Amazonec2Machine",
    spec: dict[str, Any] | None = None,
    status: dict[str, Any] | None = None,
    labels: dict[str, str] | None = None,
    owner: str | None = "capi-m1",
    deletion_timestamp: str | None = None,
    finalizers: list[str] | None = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "uid": f"uid-{name}",
        "resourceVersion": "1",
        "labels": labels or {},
    }
    if owner:
        metadata["ownerReferences"] = [
            {"apiVersion": "cluster.x-k8s.io/v1beta1", "kind": "Machine", "name": owner, "uid": "capi-uid"}
        ]
    if deletion_timestamp:
        metadata["deletionTimestamp"] = deletion_timestamp
    if finalizers is not None:
        metadata["finalizers"] = finalizers
    body: dict[str, Any] = {
        "apiVersion": "rke-machine.cattle.io/v1",
        "kind": kind,
        "metadata": metadata,
        "spec": spec if spec is not None else {"region": "us-east-1"},
    }
    if status is not None:
        body["status"] = status
    return body


def not_found() -> ApiException:
    return ApiException(status=404, reason="Not Found")


class FakeMachineStore:
    """In-memory infrastructure machine store counting status writes."""

    def __init__(self, *bodies: dict[str, Any]):
        self.bodies: dict[tuple[str, str], dict[str, Any]] = {}
        self.writes: list[dict[str, Any]] = []
        for body in bodies:
            self.add(body)

    def add(self, body: dict[str, Any]) -> InfraMachine:
        self.bodies[(body["metadata"]["namespace"], body["metadata"]["name"])] = copy.deepcopy(body)
        return InfraMachine.from_body(body)

    def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> InfraMachine:
        body = self.bodies.get((namespace, name))
        if body is None:
            raise not_found()
        return InfraMachine.from_body(body)

    def update_status(self, body: dict[str, Any]) -> InfraMachine:
        key = (body["metadata"]["namespace"], body["metadata"]["name"])
        stored = self.bodies[key]
        if stored["metadata"].get("resourceVersion") != body["metadata"].get("resourceVersion"):
            raise ApiException(status=409, reason="Conflict")
        updated = copy.deepcopy(body)
        updated["metadata"]["resourceVersion"] = str(int(stored["metadata"]["resourceVersion"]) + 1)
        self.bodies[key] = updated
        self.writes.append(copy.deepcopy(updated))
        return InfraMachine.from_body(updated)


class FakeEnqueuer:
    def __init__(self) -> None:
        self.enqueued: list[tuple[GroupVersionKind, str, str]] = []
        self.delayed: list[tuple[GroupVersionKind, str, str, float]] = []

    def enqueue(self, gvk: GroupVersionKind, namespace: str, name: str) -> None:
        self.enqueued.append((gvk, namespace, name))

    def enqueue_after(self, gvk: GroupVersionKind, namespace: str, name: str, delay: float) -> None:
        self.delayed.append((gvk, namespace, name, delay))


@pytest.fixture
def enqueuer() -> FakeEnqueuer:
    return FakeEnqueuer()


@pytest.fixture
def applier() -> Mock:
    return Mock()


@pytest.fixture
def machines() -> FakeMachineStore:
    return FakeMachineStore()


@pytest.fixture(autouse=True)
def fast_rate_limit(monkeypatch):
    monkeypatch.setattr("machine_provision_operator.utils.rate_limit._K8S_RATE_LIMIT_PER_SECOND", 10000.0)
