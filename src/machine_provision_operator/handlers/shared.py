"""Shared wiring for handlers."""

from __future__ import annotations

import threading

from kubernetes import client, config

from ..builders.job import MachineArgsBuilder
from ..provision.engine import MachineProvisioner
from ..services.apply import KubeApplier
from ..services.enqueue import KubeEnqueuer
from ..services.etcd import NodeAnnotationEtcdMembership
from ..services.kube import (
    KubeClusterStore,
    KubeInfraMachineStore,
    KubeJobStore,
    KubeMachineStore,
    KubeNamespaceStore,
    KubePodStore,
)
from ..services.kubeconfig import SecretKubeconfigProvider

_provisioner: MachineProvisioner | None = None
_provisioner_lock = threading.Lock()


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def build_provisioner() -> MachineProvisioner:
    """Wire a provisioner against the Kubernetes API."""
    custom = client.CustomObjectsApi()
    core = client.CoreV1Api()
    batch = client.BatchV1Api()
    rbac = client.RbacAuthorizationV1Api()

    capi_machines = KubeMachineStore(custom)
    return MachineProvisioner(
        machines=KubeInfraMachineStore(custom),
        jobs=KubeJobStore(batch),
        pods=KubePodStore(core),
        namespaces=KubeNamespaceStore(core),
        capi_machines=capi_machines,
        clusters=KubeClusterStore(custom),
        applier=KubeApplier(core, rbac, batch),
        enqueuer=KubeEnqueuer(custom),
        builder=MachineArgsBuilder(capi_machines),
        kubeconfigs=SecretKubeconfigProvider(core),
        etcd=NodeAnnotationEtcdMembership(),
    )


def get_provisioner() -> MachineProvisioner:
    """Return the process-wide provisioner, creating it on first use."""
    global _provisioner
    with _provisioner_lock:
        if _provisioner is None:
            load_kube_config()
            _provisioner = build_provisioner()
        return _provisioner
