"""Builder for the driver job and the objects it needs."""

from __future__ import annotations

import base64
import hashlib
import re
from dataclasses import dataclass, field
from typing import Any

from kubernetes.client.exceptions import ApiException

from ..constants import (
    CREATE_JOB_BACKOFF_LIMIT,
    DELETE_JOB_BACKOFF_LIMIT,
    KIND_CAPI_MACHINE,
    LABEL_INFRA_MACHINE_GROUP,
    LABEL_INFRA_MACHINE_KIND,
    LABEL_INFRA_MACHINE_NAME,
    LABEL_INFRA_MACHINE_VERSION,
    MACHINE_PROVISION_IMAGE,
    MACHINE_PROVISION_IMAGE_PULL_POLICY,
    PATH_TO_BOOTSTRAP,
    PATH_TO_MACHINE_FILES,
)
from ..models import InfraMachine, MachineStatus

MAX_NAME_LENGTH = 63

# Spec keys that are not driver flags
RESERVED_SPEC_FIELDS = frozenset({"providerID", "common", "cloudCredentialSecretName"})


@dataclass
class DriverArgs:
    """Everything needed to render the driver job for one action."""

    driver: str
    args: list[str]
    state_secret_name: str
    bootstrap_secret_name: str = ""
    bootstrap_optional: bool = False
    env_from: list[dict[str, Any]] = field(default_factory=list)
    backoff_limit: int = CREATE_JOB_BACKOFF_LIMIT
    image: str = MACHINE_PROVISION_IMAGE
    image_pull_policy: str = MACHINE_PROVISION_IMAGE_PULL_POLICY
    status: MachineStatus = field(default_factory=MachineStatus)


def safe_concat_name(*parts: str) -> str:
    """Join name parts with '-', shortening to a valid object name with a hash suffix."""
    full = "-".join(parts)
    if len(full) <= MAX_NAME_LENGTH:
        return full
    digest = hashlib.sha256(full.encode("utf-8")).hexdigest()
    return (full[:57] + "-" + digest[:5]).replace(".-", "-")


def get_job_name(machine_name: str) -> str:
    """Name of the provisioning job; identical for the create and delete actions."""
    return safe_concat_name(machine_name, "machine", "provision")


def get_driver_name(kind: str) -> str:
    """Driver name from an infrastructure machine kind, e.g. Amazonec2Machine -> amazonec2."""
    if kind.endswith("Machine"):
        kind = kind[: -len("Machine")]
    return kind.lower()


def _flag_name(driver: str, field_name: str) -> str:
    kebab = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", field_name).lower()
    return f"--{driver}-{kebab}"


def driver_flags(driver: str, spec: dict[str, Any]) -> list[str]:
    """Convert spec fields to driver command line flags."""
    flags: list[str] = []
    for key in sorted(spec):
        if key in RESERVED_SPEC_FIELDS:
            continue
        value = spec[key]
        flag = _flag_name(driver, key)
        if isinstance(value, bool):
            if value:
                flags.append(flag)
        elif isinstance(value, list):
            flags.extend(f"{flag}={item}" for item in value)
        elif isinstance(value, dict) or value is None or value == "":
            continue
        else:
            flags.append(f"{flag}={value}")
    return flags


def infra_machine_labels(machine: InfraMachine) -> dict[str, str]:
    """Labels that map a job back to its machine without an index lookup."""
    gvk = machine.gvk
    return {
        LABEL_INFRA_MACHINE_NAME: machine.name,
        LABEL_INFRA_MACHINE_GROUP: gvk.group,
        LABEL_INFRA_MACHINE_VERSION: gvk.version,
        LABEL_INFRA_MACHINE_KIND: gvk.kind,
    }


class MachineArgsBuilder:
    """Default object builder rendering a docker-machine style driver job."""

    def __init__(self, machines: Any):
        """Initialize builder.

        Args:
            machines: Store of Cluster API machines, used to find the bootstrap secret
        """
        self.machines = machines

    def _owning_machine(self, machine: InfraMachine) -> dict[str, Any] | None:
        owner = machine.owner_name(KIND_CAPI_MACHINE)
        if not owner:
            return None
        try:
            return self.machines.get(machine.namespace, owner)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def build_args(
        self,
        machine: InfraMachine,
        spec: dict[str, Any],
        driver: str,
        create: bool,
    ) -> DriverArgs:
        """Build the driver invocation for a create or delete action."""
        capi_machine = self._owning_machine(machine)
        bootstrap_secret_name = ""
        if capi_machine is not None:
            bootstrap = (capi_machine.get("spec") or {}).get("bootstrap") or {}
            bootstrap_secret_name = bootstrap.get("dataSecretName") or ""

        status = MachineStatus()
        env_from: list[dict[str, Any]] = []
        credential = spec.get("cloudCredentialSecretName") or ""
        if credential:
            status.cloud_credential_secret_name = credential
            _, _, credential_name = credential.rpartition(":")
            env_from.append({"secretRef": {"name": credential_name}})

        if create:
            args = [
                "create",
                "--driver",
                driver,
                "--custom-install-script",
                f"{PATH_TO_BOOTSTRAP}/value",
                *driver_flags(driver, spec),
                machine.name,
            ]
        else:
            args = ["rm", "-y", machine.name]

        return DriverArgs(
            driver=driver,
            args=args,
            state_secret_name=safe_concat_name(machine.name, "machine", "state"),
            bootstrap_secret_name=bootstrap_secret_name,
            bootstrap_optional=not create,
            env_from=env_from,
            backoff_limit=CREATE_JOB_BACKOFF_LIMIT if create else DELETE_JOB_BACKOFF_LIMIT,
            status=status,
        )

    def objects(
        self,
        ready: bool,
        machine: InfraMachine,
        args: DriverArgs,
        files: dict[str, bytes] | None,
    ) -> list[dict[str, Any]]:
        """Render the desired child objects.

        Args:
            ready: The machine already has a provider ID; the job is left out
            machine: Owning infrastructure machine
            args: Driver invocation
            files: Files secret data from the file materializer

        Returns:
            Manifests for the state secret, optional files secret, RBAC and job
        """
        namespace = machine.namespace
        job_name = get_job_name(machine.name)
        gvk = machine.gvk

        state_secret = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": args.state_secret_name, "namespace": namespace},
            "type": "Opaque",
        }
        service_account = {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": job_name, "namespace": namespace},
        }
        role = {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "Role",
            "metadata": {"name": job_name, "namespace": namespace},
            "rules": [
                {
                    "apiGroups": [""],
                    "resources": ["secrets"],
                    "resourceNames": [args.state_secret_name],
                    "verbs": ["get", "update", "patch"],
                },
                {
                    "apiGroups": [gvk.group],
                    "resources": [gvk.plural],
                    "resourceNames": [machine.name],
                    "verbs": ["get"],
                },
            ],
        }
        role_binding = {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": {"name": job_name, "namespace": namespace},
            "roleRef": {"apiGroup": "rbac.authorization.k8s.io", "kind": "Role", "name": job_name},
            "subjects": [{"kind": "ServiceAccount", "name": job_name, "namespace": namespace}],
        }

        objs: list[dict[str, Any]] = [state_secret, service_account, role, role_binding]

        files_secret_name = ""
        if files:
            files_secret_name = safe_concat_name(machine.name, "machine", "files")
            objs.append({
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"name": files_secret_name, "namespace": namespace},
                "type": "Opaque",
                "data": {k: base64.b64encode(v).decode("ascii") for k, v in sorted(files.items())},
            })

        if ready:
            return objs

        objs.append(self._job(machine, job_name, args, files_secret_name))
        return objs

    def _job(
        self,
        machine: InfraMachine,
        job_name: str,
        args: DriverArgs,
        files_secret_name: str,
    ) -> dict[str, Any]:
        labels = infra_machine_labels(machine)
        volumes: list[dict[str, Any]] = []
        mounts: list[dict[str, Any]] = []

        if args.bootstrap_secret_name:
            volumes.append({
                "name": "bootstrap",
                "secret": {"secretName": args.bootstrap_secret_name, "optional": args.bootstrap_optional},
            })
            mounts.append({"name": "bootstrap", "mountPath": PATH_TO_BOOTSTRAP, "readOnly": True})

        if files_secret_name:
            volumes.append({
                "name": "machine-files",
                "secret": {"secretName": files_secret_name, "defaultMode": 0o600},
            })
            mounts.append({"name": "machine-files", "mountPath": PATH_TO_MACHINE_FILES, "readOnly": True})

        container = {
            "name": "machine",
            "image": args.image,
            "imagePullPolicy": args.image_pull_policy,
            "args": args.args,
            "env": [
                {"name": "MACHINE_STATE_SECRET_NAME", "value": args.state_secret_name},
                {"name": "MACHINE_STATE_SECRET_NAMESPACE", "value": machine.namespace},
            ],
            "volumeMounts": mounts,
        }
        if args.env_from:
            container["envFrom"] = args.env_from

        return {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": {"name": job_name, "namespace": machine.namespace, "labels": dict(labels)},
            "spec": {
                "backoffLimit": args.backoff_limit,
                "template": {
                    "metadata": {"labels": dict(labels)},
                    "spec": {
                        "restartPolicy": "Never",
                        "serviceAccountName": job_name,
                        "volumes": volumes,
                        "containers": [container],
                    },
                },
            },
        }
