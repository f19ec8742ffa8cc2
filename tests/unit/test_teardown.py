"""Tests for ordered machine teardown."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from kubernetes.client.exceptions import ApiException

from machine_provision_operator.constants import (
    LABEL_CAPI_CLUSTER_NAME,
    LABEL_ETCD_ROLE,
    TEARDOWN_POLL_SECONDS,
)
from machine_provision_operator.models import GroupVersionKind
from machine_provision_operator.provision.result import Done, RetryWithoutFinalizing
from machine_provision_operator.provision.teardown import runtime_for_version
from machine_provision_operator.utils.errors import JobNotFinishedError, ReconcileError

from .conftest import FakeMachineStore, machine_body, not_found
from .test_engine import GVK, capi_store, make_provisioner

ETCD_LABELS = {LABEL_ETCD_ROLE: "true", LABEL_CAPI_CLUSTER_NAME: "c1"}
DELETING = "2024-01-01T00:00:00Z"


def deleting_machine(store: FakeMachineStore, status: dict | None = None, labels: dict | None = None):
    return store.add(
        machine_body(
            status={"jobComplete": True} if status is None else status,
            labels=labels,
            deletion_timestamp=DELETING,
        )
    )


def jobs_with(status: dict) -> Mock:
    jobs = Mock()
    jobs.get.return_value = {"metadata": {"name": "m1-machine-provision"}, "status": status}
    return jobs


def cluster(deleting: bool = False) -> dict:
    metadata = {"name": "c1", "namespace": "fleet-default"}
    if deleting:
        metadata["deletionTimestamp"] = DELETING
    return {"metadata": metadata, "spec": {"kubernetesVersion": "v1.28.3+rke2r1"}}


class TestRuntimeForVersion:
    def test_k3s(self):
        """Test detection of the k3s runtime."""
        assert runtime_for_version("v1.28.3+k3s1") == "k3s"

    def test_rke2(self):
        """Test detection of the rke2 runtime."""
        assert runtime_for_version("v1.28.3+rke2r1") == "rke2"
        assert runtime_for_version("") == "rke2"


class TestOnRemove:
    def test_terminating_namespace_finalizes_immediately(self, applier, enqueuer):
        """Test that a terminating namespace finalizes without a delete job."""
        store = FakeMachineStore()
        machine = deleting_machine(store, status={})
        namespaces = Mock()
        namespaces.get.return_value = {"metadata": {"name": "fleet-default", "deletionTimestamp": DELETING}}
        provisioner = make_provisioner(store, applier, enqueuer, namespaces=namespaces)

        result = provisioner.on_remove(machine)

        assert isinstance(result, Done)
        applier.apply_owned.assert_not_called()

    def test_completed_delete_job_removes_owned_objects(self, applier, enqueuer):
        """Test that a finished delete job removes all owned objects."""
        store = FakeMachineStore()
        machine = deleting_machine(store)
        jobs = jobs_with({"completionTime": "2024-01-01T00:05:00Z"})
        provisioner = make_provisioner(store, applier, enqueuer, jobs=jobs)

        result = provisioner.on_remove(machine)

        assert isinstance(result, Done)
        jobs.get.assert_called_once_with("fleet-default", "m1-machine-provision")
        delete_apply, cleanup = applier.apply_owned.call_args_list
        _, objects = delete_apply.args
        assert delete_apply.kwargs == {"ignore_previous_applied": True}
        job = objects[-1]
        assert job["spec"]["backoffLimit"] == 3
        assert job["spec"]["template"]["spec"]["containers"][0]["args"] == ["rm", "-y", "m1"]
        assert cleanup.args[1] == []

    def test_running_delete_job_retries_without_poll(self, applier, enqueuer):
        """A running delete job waits for its own job event."""
        store = FakeMachineStore()
        machine = deleting_machine(store)
        provisioner = make_provisioner(store, applier, enqueuer, jobs=jobs_with({"active": 1}))

        result = provisioner.on_remove(machine)

        assert isinstance(result, RetryWithoutFinalizing)
        assert enqueuer.delayed == []
        assert applier.apply_owned.call_count == 1

    def test_failed_create_job_still_tears_down(self, applier, enqueuer):
        """Test that a failed create job does not block teardown."""
        store = FakeMachineStore()
        machine = deleting_machine(store, status={"failureReason": "CreateError"})
        provisioner = make_provisioner(store, applier, enqueuer, jobs=jobs_with({"completionTime": "now"}))

        assert isinstance(provisioner.on_remove(machine), Done)

    def test_unfinished_create_job_is_fatal(self, applier, enqueuer):
        """Test that teardown refuses while the create job runs."""
        store = FakeMachineStore()
        machine = deleting_machine(store, status={})
        provisioner = make_provisioner(store, applier, enqueuer)

        with pytest.raises(JobNotFinishedError, match="cannot delete machine m1"):
            provisioner.on_remove(machine)
        applier.apply_owned.assert_not_called()

    def test_waits_for_drain(self, applier, enqueuer):
        """Test that teardown waits for the node to drain."""
        store = FakeMachineStore()
        machine = deleting_machine(store)
        capi = capi_store()
        capi.get.return_value = {
            "spec": {"infrastructureRef": {"apiVersion": "rke-machine.cattle.io/v1", "kind": "Amazonec2Machine"}},
            "status": {"conditions": [{"type": "DrainingSucceeded", "status": "False", "reason": "Draining"}]},
        }
        provisioner = make_provisioner(store, applier, enqueuer, capi=capi)

        result = provisioner.on_remove(machine)

        assert isinstance(result, RetryWithoutFinalizing)
        assert enqueuer.delayed == [(GVK, "fleet-default", "m1", TEARDOWN_POLL_SECONDS)]
        applier.apply_owned.assert_not_called()

    def test_failed_drain_does_not_block(self, applier, enqueuer):
        """Test that a failed drain does not block teardown."""
        store = FakeMachineStore()
        machine = deleting_machine(store)
        capi = capi_store()
        capi.get.return_value = {
            "spec": {},
            "status": {"conditions": [{"type": "DrainingSucceeded", "status": "False", "reason": "DrainingFailed"}]},
        }
        provisioner = make_provisioner(
            store, applier, enqueuer, capi=capi, jobs=jobs_with({"completionTime": "now"})
        )

        assert isinstance(provisioner.on_remove(machine), Done)

    def test_missing_capi_machine_does_not_block(self, applier, enqueuer):
        """Test that a missing Cluster API machine does not block teardown."""
        store = FakeMachineStore()
        machine = deleting_machine(store)
        capi = Mock()
        capi.get.side_effect = not_found()
        provisioner = make_provisioner(
            store, applier, enqueuer, capi=capi, jobs=jobs_with({"completionTime": "now"})
        )

        assert isinstance(provisioner.on_remove(machine), Done)


class TestEtcdGate:
    def test_member_not_removed_retries_once(self, applier, enqueuer):
        """Test that an etcd member still present retries with one poll."""
        store = FakeMachineStore()
        machine = deleting_machine(store, labels=ETCD_LABELS)
        clusters = Mock()
        clusters.get.return_value = cluster()
        etcd = Mock()
        etcd.safely_removed.return_value = False
        kubeconfigs = Mock()
        kubeconfigs.get_kubeconfig.return_value = {"clusters": []}
        provisioner = make_provisioner(
            store,
            applier,
            enqueuer,
            capi=capi_store(node="node-1"),
            clusters=clusters,
            etcd=etcd,
            kubeconfigs=kubeconfigs,
        )

        result = provisioner.on_remove(machine)

        assert isinstance(result, RetryWithoutFinalizing)
        assert enqueuer.delayed == [(GVK, "fleet-default", "m1", TEARDOWN_POLL_SECONDS)]
        etcd.safely_removed.assert_called_once_with({"clusters": []}, "rke2", "node-1")
        applier.apply_owned.assert_not_called()

    def test_member_removed_proceeds(self, applier, enqueuer):
        """Test that teardown proceeds once the member is removed."""
        store = FakeMachineStore()
        machine = deleting_machine(store, labels=ETCD_LABELS)
        clusters = Mock()
        clusters.get.return_value = cluster()
        etcd = Mock()
        etcd.safely_removed.return_value = True
        provisioner = make_provisioner(
            store,
            applier,
            enqueuer,
            capi=capi_store(node="node-1"),
            clusters=clusters,
            etcd=etcd,
            jobs=jobs_with({"completionTime": "now"}),
        )

        assert isinstance(provisioner.on_remove(machine), Done)

    def test_missing_cluster_label_is_fatal(self, applier, enqueuer):
        """Test that an etcd machine without a cluster label is a domain error."""
        store = FakeMachineStore()
        machine = deleting_machine(store, labels={LABEL_ETCD_ROLE: "true"})
        provisioner = make_provisioner(store, applier, enqueuer)

        with pytest.raises(ReconcileError, match=LABEL_CAPI_CLUSTER_NAME):
            provisioner.on_remove(machine)

    @pytest.mark.parametrize("cluster_lookup", [not_found(), cluster(deleting=True)])
    def test_gone_or_deleting_cluster_skips_check(self, applier, enqueuer, cluster_lookup):
        """Test that the etcd check is skipped when the cluster is gone or deleting."""
        store = FakeMachineStore()
        machine = deleting_machine(store, labels=ETCD_LABELS)
        clusters = Mock()
        if isinstance(cluster_lookup, ApiException):
            clusters.get.side_effect = cluster_lookup
        else:
            clusters.get.return_value = cluster_lookup
        etcd = Mock()
        provisioner = make_provisioner(
            store,
            applier,
            enqueuer,
            capi=capi_store(node="node-1"),
            clusters=clusters,
            etcd=etcd,
            jobs=jobs_with({"completionTime": "now"}),
        )

        assert isinstance(provisioner.on_remove(machine), Done)
        etcd.safely_removed.assert_not_called()

    def test_no_node_skips_check(self, applier, enqueuer):
        """Test that the etcd check is skipped before a node exists."""
        store = FakeMachineStore()
        machine = deleting_machine(store, labels=ETCD_LABELS)
        clusters = Mock()
        clusters.get.return_value = cluster()
        etcd = Mock()
        provisioner = make_provisioner(
            store, applier, enqueuer, clusters=clusters, etcd=etcd, jobs=jobs_with({"completionTime": "now"})
        )

        assert isinstance(provisioner.on_remove(machine), Done)
        etcd.safely_removed.assert_not_called()

    def test_cluster_lookup_error_propagates(self, applier, enqueuer):
        """Test that cluster lookup errors propagate."""
        store = FakeMachineStore()
        machine = deleting_machine(store, labels=ETCD_LABELS)
        clusters = Mock()
        clusters.get.side_effect = ApiException(status=500)
        provisioner = make_provisioner(store, applier, enqueuer, clusters=clusters)

        with pytest.raises(ApiException):
            provisioner.on_remove(machine)
