"""Typed views over infrastructure machine resources."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from .constants import LABEL_ETCD_ROLE
from .utils.errors import InvalidResourceError


class GroupVersionKind(NamedTuple):
    """Identity of a resource type."""

    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def plural(self) -> str:
        return f"{self.kind.lower()}s"

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> GroupVersionKind:
        group, _, version = api_version.rpartition("/")
        return cls(group, version, kind)


@dataclass
class Condition:
    """A status condition. Equality compares type, status, reason and message."""

    type: str
    status: str
    reason: str = ""
    message: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            type=data.get("type", ""),
            status=data.get("status", ""),
            reason=data.get("reason") or "",
            message=data.get("message") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
        }


# (attribute, status key) pairs in encoding order
_STATUS_FIELDS = (
    ("job_complete", "jobComplete"),
    ("job_name", "jobName"),
    ("failure_reason", "failureReason"),
    ("failure_message", "failureMessage"),
    ("cloud_credential_secret_name", "cloudCredentialSecretName"),
)


@dataclass
class MachineStatus:
    """Status fields owned by the provisioner."""

    job_complete: bool = False
    job_name: str = ""
    failure_reason: str = ""
    failure_message: str = ""
    cloud_credential_secret_name: str = ""

    def to_map(self) -> dict[str, Any]:
        """Encode to status keys, omitting false and empty values."""
        return {key: getattr(self, attr) for attr, key in _STATUS_FIELDS if getattr(self, attr)}

    @classmethod
    def from_map(cls, data: dict[str, Any] | None) -> MachineStatus:
        data = data or {}
        return cls(
            job_complete=bool(data.get("jobComplete", False)),
            job_name=data.get("jobName") or "",
            failure_reason=data.get("failureReason") or "",
            failure_message=data.get("failureMessage") or "",
            cloud_credential_secret_name=data.get("cloudCredentialSecretName") or "",
        )


@dataclass
class InfraMachine:
    """An infrastructure machine decoded from its API body.

    The raw body is kept so that fields this operator does not model survive a
    round trip through a status write.
    """

    api_version: str
    kind: str
    namespace: str
    name: str
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[dict[str, Any]] = field(default_factory=list)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: str | None = None
    resource_version: str = ""
    spec: dict[str, Any] = field(default_factory=dict)
    status: MachineStatus = field(default_factory=MachineStatus)
    conditions: list[Condition] = field(default_factory=list)
    body: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> InfraMachine:
        """Decode and validate an API body.

        Raises:
            InvalidResourceError: If identity fields are missing
        """
        body = copy.deepcopy(dict(body))
        metadata = body.get("metadata") or {}
        missing = [
            path
            for path, value in (
                ("apiVersion", body.get("apiVersion")),
                ("kind", body.get("kind")),
                ("metadata.name", metadata.get("name")),
                ("metadata.namespace", metadata.get("namespace")),
            )
            if not value
        ]
        if missing:
            raise InvalidResourceError(f"infrastructure machine is missing {', '.join(missing)}")

        status = body.get("status") or {}
        spec = body.get("spec") or {}
        if not isinstance(spec, dict):
            raise InvalidResourceError(f"spec of {metadata['name']} must be an object")

        return cls(
            api_version=body["apiVersion"],
            kind=body["kind"],
            namespace=metadata["namespace"],
            name=metadata["name"],
            uid=metadata.get("uid", ""),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            owner_references=list(metadata.get("ownerReferences") or []),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            resource_version=metadata.get("resourceVersion", ""),
            spec=spec,
            status=MachineStatus.from_map(status),
            conditions=[Condition.from_dict(c) for c in status.get("conditions") or []],
            body=body,
        )

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind.from_api_version(self.api_version, self.kind)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_etcd_member(self) -> bool:
        return self.labels.get(LABEL_ETCD_ROLE) == "true"

    @property
    def raw_status(self) -> dict[str, Any]:
        return self.body.get("status") or {}

    def owner_name(self, kind: str) -> str | None:
        """Name of the first owner reference of the given kind."""
        for owner in self.owner_references:
            if owner.get("kind") == kind:
                return owner.get("name")
        return None

    def get_condition(self, condition_type: str) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def to_body(self) -> dict[str, Any]:
        """Return a deep copy of the raw body."""
        return copy.deepcopy(self.body)

    def owner_reference(self) -> dict[str, Any]:
        """Owner reference pointing at this machine, for child objects."""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }
