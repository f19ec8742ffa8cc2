"""Ordered teardown of infrastructure machines.

A machine is only deprovisioned once its etcd member has been safely removed
from the downstream cluster, its create job has finished, and its node has
drained. After the delete job completes, all owned child objects are removed
and the machine may be finalized.
"""

from __future__ import annotations

import logging
from typing import Any

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..builders.job import get_job_name
from ..constants import (
    COND_DRAINING_SUCCEEDED,
    KIND_CAPI_MACHINE,
    LABEL_CAPI_CLUSTER_NAME,
    REASON_DRAINING_FAILED,
    TEARDOWN_POLL_SECONDS,
)
from ..models import GroupVersionKind, InfraMachine
from ..services.interfaces import (
    Applier,
    ClusterStore,
    Enqueuer,
    EtcdMembership,
    JobStore,
    KubeconfigProvider,
    MachineStore,
    NamespaceStore,
)
from ..tracing import trace_span
from ..utils.conditions import condition_is, condition_reason
from ..utils.errors import JobNotFinishedError, ReconcileError
from .result import Done, ReconcileResult, RetryWithoutFinalizing

logger = logging.getLogger(__name__)


def runtime_for_version(kubernetes_version: str) -> str:
    """Distribution runtime of a downstream cluster from its Kubernetes version."""
    return "k3s" if "k3s" in (kubernetes_version or "") else "rke2"


def is_deleting(obj: dict[str, Any] | None) -> bool:
    return bool(((obj or {}).get("metadata") or {}).get("deletionTimestamp"))


class TeardownOrchestrator:
    """Gates the delete job on etcd removal, create job completion and drain."""

    def __init__(
        self,
        *,
        provisioner: Any,
        jobs: JobStore,
        namespaces: NamespaceStore,
        capi_machines: MachineStore,
        clusters: ClusterStore,
        applier: Applier,
        enqueuer: Enqueuer,
        kubeconfigs: KubeconfigProvider,
        etcd: EtcdMembership,
    ):
        self.provisioner = provisioner
        self.jobs = jobs
        self.namespaces = namespaces
        self.capi_machines = capi_machines
        self.clusters = clusters
        self.applier = applier
        self.enqueuer = enqueuer
        self.kubeconfigs = kubeconfigs
        self.etcd = etcd

    def _retry(self, gvk: GroupVersionKind, machine: InfraMachine, gate: str, reason: str) -> RetryWithoutFinalizing:
        logger.info("Teardown of %s %s waiting: %s", machine.kind, machine.key, reason)
        metrics.teardown_wait_total.labels(gate=gate).inc()
        self.enqueuer.enqueue_after(gvk, machine.namespace, machine.name, TEARDOWN_POLL_SECONDS)
        return RetryWithoutFinalizing(reason)

    def namespace_is_removed(self, machine: InfraMachine) -> bool:
        return is_deleting(self.namespaces.get(machine.namespace))

    def owning_machine(self, machine: InfraMachine) -> dict[str, Any] | None:
        """The Cluster API machine owning ``machine``; None if there is none."""
        owner = machine.owner_name(KIND_CAPI_MACHINE)
        if not owner:
            return None
        try:
            return self.capi_machines.get(machine.namespace, owner)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def on_remove(self, machine: InfraMachine) -> ReconcileResult:
        """Run one teardown pass.

        Returns:
            Done once every owned object is gone and the machine may be finalized,
            RetryWithoutFinalizing while a gate or the delete job is pending

        Raises:
            ReconcileError: The machine cannot be torn down as-is
            ApiException: A lookup, apply or safe-removal check failed
        """
        if self.namespace_is_removed(machine):
            # Nothing can be created in a terminating namespace
            logger.info("Namespace %s is terminating, finalizing %s", machine.namespace, machine.name)
            return Done(machine)

        with trace_span("teardown_machine", kind=machine.kind, attributes={"machine.name": machine.name}):
            if machine.is_etcd_member:
                result = self._check_etcd_removed(machine)
                if result is not None:
                    return result
            return self._remove(machine)

    def _check_etcd_removed(self, machine: InfraMachine) -> ReconcileResult | None:
        """Block teardown until the node's etcd member is safely removed.

        Returns:
            None when teardown may proceed, RetryWithoutFinalizing otherwise
        """
        cluster_name = machine.labels.get(LABEL_CAPI_CLUSTER_NAME, "")
        if not cluster_name:
            raise ReconcileError(
                f"error retrieving the cluster name for etcd node, label key {LABEL_CAPI_CLUSTER_NAME} "
                f"does not exist on machine {machine.key}"
            )

        try:
            cluster = self.clusters.get(machine.namespace, cluster_name)
        except ApiException as e:
            if e.status != 404:
                raise
            cluster = None

        if cluster is None or is_deleting(cluster):
            return None

        capi_machine = self.owning_machine(machine)
        node_ref = ((capi_machine or {}).get("status") or {}).get("nodeRef")
        if not node_ref:
            logger.debug("No node is associated with etcd machine %s, proceeding with deletion", machine.key)
            return None

        kubeconfig = self.kubeconfigs.get_kubeconfig(cluster)
        runtime = runtime_for_version((cluster.get("spec") or {}).get("kubernetesVersion", ""))
        if self.etcd.safely_removed(kubeconfig, runtime, node_ref["name"]):
            return None

        return self._retry(machine.gvk, machine, "etcd", f"etcd member of node {node_ref['name']} not yet removed")

    def _remove(self, machine: InfraMachine) -> ReconcileResult:
        if not machine.status.job_complete and not machine.status.failure_reason:
            raise JobNotFinishedError(f"cannot delete machine {machine.name} because create job has not finished")

        capi_machine = self.owning_machine(machine)
        if capi_machine is not None:
            conditions = (capi_machine.get("status") or {}).get("conditions") or []
            if condition_is(conditions, COND_DRAINING_SUCCEEDED, "False") and \
                    condition_reason(conditions, COND_DRAINING_SUCCEEDED) != REASON_DRAINING_FAILED:
                infra_ref = (capi_machine.get("spec") or {}).get("infrastructureRef") or {}
                gvk = machine.gvk
                if infra_ref.get("apiVersion") and infra_ref.get("kind"):
                    gvk = GroupVersionKind.from_api_version(infra_ref["apiVersion"], infra_ref["kind"])
                return self._retry(gvk, machine, "drain", "waiting for node to drain")

        self.provisioner.run(machine, create=False)

        job = self.jobs.get(machine.namespace, get_job_name(machine.name))
        if (job.get("status") or {}).get("completionTime"):
            # No desired objects: every owned child is deleted
            self.applier.apply_owned(machine, [])
            logger.info("Delete job for %s completed, owned objects removed", machine.key)
            return Done(machine)

        metrics.teardown_wait_total.labels(gate="delete_job").inc()
        return RetryWithoutFinalizing("waiting for delete job to complete")
