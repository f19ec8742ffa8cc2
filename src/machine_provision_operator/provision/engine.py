"""Reconciliation engine for infrastructure machines."""

from __future__ import annotations

import copy
import logging
from typing import Any

from kubernetes.client.exceptions import ApiException

from ..builders.files import construct_files_secret
from ..builders.job import get_driver_name
from ..constants import (
    BOOTSTRAP_POLL_SECONDS,
    COND_CREATE_JOB,
    LABEL_INFRA_MACHINE_GROUP,
    LABEL_INFRA_MACHINE_KIND,
    LABEL_INFRA_MACHINE_NAME,
    LABEL_INFRA_MACHINE_VERSION,
)
from ..models import GroupVersionKind, InfraMachine
from ..services.interfaces import (
    Applier,
    ClusterStore,
    Enqueuer,
    EtcdMembership,
    InfraMachineStore,
    JobStore,
    KubeconfigProvider,
    MachineStore,
    NamespaceStore,
    ObjectBuilder,
    PodStore,
)
from ..tracing import add_span_attribute, trace_span
from .job_status import get_machine_status, is_create_job
from .result import Done, ReconcileResult
from .status import StatusPatcher
from .teardown import TeardownOrchestrator

logger = logging.getLogger(__name__)


def job_owner(job: dict[str, Any]) -> tuple[GroupVersionKind, str, str] | None:
    """Identity of the infrastructure machine a provisioning job belongs to.

    Read from the pod template labels, which survive on every job revision.
    """
    template = ((job.get("spec") or {}).get("template") or {}).get("metadata") or {}
    labels = template.get("labels") or {}

    name = labels.get(LABEL_INFRA_MACHINE_NAME, "")
    kind = labels.get(LABEL_INFRA_MACHINE_KIND, "")
    if not name or not kind:
        return None

    gvk = GroupVersionKind(
        labels.get(LABEL_INFRA_MACHINE_GROUP, ""),
        labels.get(LABEL_INFRA_MACHINE_VERSION, ""),
        kind,
    )
    return gvk, (job.get("metadata") or {}).get("namespace", ""), name


class MachineProvisioner:
    """Drives infrastructure machines through their provisioning job.

    All collaborators are injected; see ``services.interfaces`` for their
    contracts and ``handlers.shared`` for the Kubernetes-backed wiring.
    """

    def __init__(
        self,
        *,
        machines: InfraMachineStore,
        jobs: JobStore,
        pods: PodStore,
        namespaces: NamespaceStore,
        capi_machines: MachineStore,
        clusters: ClusterStore,
        applier: Applier,
        enqueuer: Enqueuer,
        builder: ObjectBuilder,
        kubeconfigs: KubeconfigProvider,
        etcd: EtcdMembership,
    ):
        self.machines = machines
        self.jobs = jobs
        self.pods = pods
        self.applier = applier
        self.enqueuer = enqueuer
        self.builder = builder
        self.patcher = StatusPatcher(machines)
        self.teardown = TeardownOrchestrator(
            provisioner=self,
            jobs=jobs,
            namespaces=namespaces,
            capi_machines=capi_machines,
            clusters=clusters,
            applier=applier,
            enqueuer=enqueuer,
            kubeconfigs=kubeconfigs,
            etcd=etcd,
        )

    def on_change(self, machine: InfraMachine) -> InfraMachine:
        """Reconcile the create path and report it through the CreateJob condition.

        Raises:
            Exception: The reconcile error, after it has been recorded on the machine
        """
        try:
            result = self.run(machine, create=True)
        except Exception as err:
            self.patcher.set_condition(machine, COND_CREATE_JOB, err)
            raise

        if isinstance(result, Done) and result.machine is not None:
            machine = result.machine
        return self.patcher.set_condition(machine, COND_CREATE_JOB, None)

    def on_remove(self, machine: InfraMachine) -> ReconcileResult:
        """Tear the machine down; see ``TeardownOrchestrator``."""
        return self.teardown.on_remove(machine)

    def run(self, machine: InfraMachine, create: bool) -> ReconcileResult:
        """Build and apply the driver job and its objects for one action.

        Args:
            machine: Machine being reconciled
            create: True for the create path, False for the delete action

        Returns:
            Done with the latest machine copy
        """
        if create and machine.deletion_timestamp:
            return Done(machine)

        with trace_span("run_machine_provision", kind=machine.kind,
                        attributes={"machine.name": machine.name, "machine.create": create}):
            spec = copy.deepcopy(machine.spec)
            driver = get_driver_name(machine.kind)
            add_span_attribute("machine.driver", driver)

            files = construct_files_secret(driver, spec)
            args = self.builder.build_args(machine, spec, driver, create)

            if not args.bootstrap_secret_name and not args.bootstrap_optional:
                logger.info("Bootstrap secret for %s %s is not ready yet", machine.kind, machine.key)
                self.enqueuer.enqueue_after(machine.gvk, machine.namespace, machine.name, BOOTSTRAP_POLL_SECONDS)
                return Done(machine)

            ready = bool(spec.get("providerID")) and create
            add_span_attribute("machine.ready", ready)
            objects = self.builder.objects(ready, machine, args, files)

            # A delete must go through even if the create apply never completed
            self.applier.apply_owned(machine, objects, ignore_previous_applied=not create)

            if create:
                return Done(self.patcher.patch_status(machine, args.status))
            return Done(machine)

    def on_job_change(self, job: dict[str, Any] | None) -> InfraMachine | None:
        """Translate a provisioning job event into the owning machine's status.

        Returns:
            The updated machine, or None when the job does not map to a machine
        """
        if not job:
            return None

        owner = job_owner(job)
        if owner is None:
            return None
        gvk, namespace, name = owner

        try:
            machine = self.machines.get(gvk, namespace, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

        status = get_machine_status(job, self.pods, is_create_job(job))
        machine = self.patcher.patch_status(machine, status)

        self.enqueuer.enqueue(gvk, namespace, name)
        return machine
