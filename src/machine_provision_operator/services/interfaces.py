"""Collaborator interfaces injected into the provisioner.

Read-only lookups may be served from caches shared by all workers. Lookups
raise ``kubernetes.client.exceptions.ApiException`` with status 404 when the
object does not exist.
"""

from __future__ import annotations

from typing import Any, Protocol

from ..builders.job import DriverArgs
from ..models import GroupVersionKind, InfraMachine


class InfraMachineStore(Protocol):
    """Access to infrastructure machines of any registered kind."""

    def get(self, gvk: GroupVersionKind, namespace: str, name: str) -> InfraMachine:
        """Fetch a fresh copy of a machine."""
        ...

    def update_status(self, body: dict[str, Any]) -> InfraMachine:
        """Persist a status subresource write; raises 409 on a stale resourceVersion."""
        ...


class JobStore(Protocol):
    def get(self, namespace: str, name: str) -> dict[str, Any]:
        ...


class PodStore(Protocol):
    def list(self, namespace: str, label_selector: str) -> list[dict[str, Any]]:
        ...


class NamespaceStore(Protocol):
    def get(self, name: str) -> dict[str, Any]:
        ...


class MachineStore(Protocol):
    """Cluster API machines (the logical machines owning infrastructure machines)."""

    def get(self, namespace: str, name: str) -> dict[str, Any]:
        ...


class ClusterStore(Protocol):
    def get(self, namespace: str, name: str) -> dict[str, Any]:
        ...


class Applier(Protocol):
    """Declarative apply of the child objects owned by a machine."""

    def apply_owned(
        self,
        owner: InfraMachine,
        objects: list[dict[str, Any]],
        ignore_previous_applied: bool = False,
    ) -> None:
        """Make the owned children of ``owner`` equal ``objects``.

        Owned objects of the registered types that are not in ``objects`` are
        deleted, so an empty list removes every owned child.
        """
        ...


class Enqueuer(Protocol):
    def enqueue(self, gvk: GroupVersionKind, namespace: str, name: str) -> None:
        """Request an immediate re-evaluation."""
        ...

    def enqueue_after(self, gvk: GroupVersionKind, namespace: str, name: str, delay: float) -> None:
        """Request a re-evaluation after ``delay`` seconds. Repeated requests for one key coalesce."""
        ...


class KubeconfigProvider(Protocol):
    def get_kubeconfig(self, cluster: dict[str, Any]) -> dict[str, Any]:
        """Return the downstream kubeconfig of a provisioning cluster."""
        ...


class EtcdMembership(Protocol):
    def safely_removed(self, kubeconfig: dict[str, Any], runtime: str, node_name: str) -> bool:
        """Check whether the node's etcd member has been removed from the quorum."""
        ...


class ObjectBuilder(Protocol):
    """Renders the driver job and its supporting objects."""

    def build_args(
        self,
        machine: InfraMachine,
        spec: dict[str, Any],
        driver: str,
        create: bool,
    ) -> DriverArgs:
        ...

    def objects(
        self,
        ready: bool,
        machine: InfraMachine,
        args: DriverArgs,
        files: dict[str, bytes] | None,
    ) -> list[dict[str, Any]]:
        ...
