"""Declarative apply of the child objects owned by an infrastructure machine.

Every applied object carries an owner-id label and a hash of its desired
form. On each apply the owned objects of every registered type are listed by
label and compared against the desired set: stale ones are deleted, changed
ones are patched (Jobs are replaced, their pod template is immutable) and
missing ones are created.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from typing import Any

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..constants import (
    ANNOTATION_APPLIED_HASH,
    CONTROLLER_NAME,
    FIELD_MANAGER,
    LABEL_MANAGED_BY,
    LABEL_OWNER_ID,
)
from ..models import InfraMachine
from ..utils.errors import InvalidResourceError, is_conflict, is_not_found
from .kube import call_k8s, to_dict

logger = logging.getLogger(__name__)

# (apiVersion, kind) -> (API attribute on KubeApplier, method suffix)
REGISTERED_TYPES: dict[tuple[str, str], tuple[str, str]] = {
    ("v1", "Secret"): ("core", "namespaced_secret"),
    ("v1", "ServiceAccount"): ("core", "namespaced_service_account"),
    ("rbac.authorization.k8s.io/v1", "Role"): ("rbac", "namespaced_role"),
    ("rbac.authorization.k8s.io/v1", "RoleBinding"): ("rbac", "namespaced_role_binding"),
    ("batch/v1", "Job"): ("batch", "namespaced_job"),
}

# Kinds that are deleted and re-created instead of patched
REPLACE_ON_CHANGE = frozenset({"Job"})


def owner_id(owner: InfraMachine) -> str:
    """Stable label value identifying an owner across types."""
    gvk = owner.gvk
    raw = "/".join((gvk.group, gvk.version, gvk.kind, owner.namespace, owner.name))
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:40]


def applied_hash(obj: dict[str, Any]) -> str:
    """Hash of an object's desired form, stable across key ordering."""
    canonical = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def type_key(obj: dict[str, Any]) -> tuple[str, str]:
    return obj.get("apiVersion", ""), obj.get("kind", "")


class KubeApplier:
    """Applies owned objects through the typed Kubernetes APIs."""

    def __init__(
        self,
        core: client.CoreV1Api,
        rbac: client.RbacAuthorizationV1Api,
        batch: client.BatchV1Api,
    ):
        self.core = core
        self.rbac = rbac
        self.batch = batch

    def _method(self, key: tuple[str, str], verb: str) -> Any:
        api_attr, suffix = REGISTERED_TYPES[key]
        return getattr(getattr(self, api_attr), f"{verb}_{suffix}")

    def _desired(self, owner: InfraMachine, obj: dict[str, Any], oid: str) -> dict[str, Any]:
        key = type_key(obj)
        if key not in REGISTERED_TYPES:
            raise InvalidResourceError(f"cannot apply unregistered type {key[0]}/{key[1]}")

        desired = copy.deepcopy(obj)
        metadata = desired.setdefault("metadata", {})
        if not metadata.get("name"):
            raise InvalidResourceError(f"{key[1]} owned by {owner.key} has no name")
        metadata["namespace"] = owner.namespace
        metadata["ownerReferences"] = [owner.owner_reference()]
        labels = metadata.setdefault("labels", {})
        labels[LABEL_OWNER_ID] = oid
        labels[LABEL_MANAGED_BY] = CONTROLLER_NAME
        metadata.setdefault("annotations", {})[ANNOTATION_APPLIED_HASH] = applied_hash(desired)
        return desired

    def apply_owned(
        self,
        owner: InfraMachine,
        objects: list[dict[str, Any]],
        ignore_previous_applied: bool = False,
    ) -> None:
        """Make the owned children of ``owner`` equal ``objects``.

        Args:
            owner: Machine owning the objects
            objects: Desired objects; an empty list deletes every owned child
            ignore_previous_applied: Replace objects that exist by name but were
                not recorded as owned, instead of failing with a conflict

        Raises:
            InvalidResourceError: An object is of an unregistered type or unnamed
            ApiException: An API call failed
        """
        oid = owner_id(owner)
        desired_by_type: dict[tuple[str, str], dict[str, dict[str, Any]]] = {key: {} for key in REGISTERED_TYPES}
        for obj in objects:
            desired = self._desired(owner, obj, oid)
            desired_by_type[type_key(desired)][desired["metadata"]["name"]] = desired

        for key, desired in desired_by_type.items():
            self._apply_type(owner, key, desired, oid, ignore_previous_applied)

    def _apply_type(
        self,
        owner: InfraMachine,
        key: tuple[str, str],
        desired: dict[str, dict[str, Any]],
        oid: str,
        ignore_previous_applied: bool,
    ) -> None:
        kind = key[1]
        existing = call_k8s(
            f"list_{kind.lower()}",
            self._method(key, "list"),
            namespace=owner.namespace,
            label_selector=f"{LABEL_OWNER_ID}={oid}",
        )
        api_client = getattr(self, REGISTERED_TYPES[key][0]).api_client
        index = {}
        for item in existing.items:
            item_dict = to_dict(api_client, item)
            index[item_dict["metadata"]["name"]] = item_dict

        for name, current in index.items():
            if name not in desired:
                self._delete(owner, key, name)
                continue

            want = desired[name]
            current_hash = ((current.get("metadata") or {}).get("annotations") or {}).get(ANNOTATION_APPLIED_HASH)
            if current_hash == want["metadata"]["annotations"][ANNOTATION_APPLIED_HASH]:
                continue

            if kind in REPLACE_ON_CHANGE:
                self._delete(owner, key, name)
                # A conflict while the old Job terminates propagates and is retried
                self._create(owner, key, want, ignore_previous_applied=False)
            else:
                call_k8s(
                    f"patch_{kind.lower()}",
                    self._method(key, "patch"),
                    name=name,
                    namespace=owner.namespace,
                    body=want,
                    field_manager=FIELD_MANAGER,
                )
                metrics.apply_operations_total.labels(kind=kind, operation="patch").inc()
                logger.debug("Patched %s %s/%s", kind, owner.namespace, name)

        for name, want in desired.items():
            if name not in index:
                self._create(owner, key, want, ignore_previous_applied)

    def _create(
        self,
        owner: InfraMachine,
        key: tuple[str, str],
        obj: dict[str, Any],
        ignore_previous_applied: bool,
    ) -> None:
        kind = key[1]
        name = obj["metadata"]["name"]
        try:
            call_k8s(
                f"create_{kind.lower()}",
                self._method(key, "create"),
                namespace=owner.namespace,
                body=obj,
                field_manager=FIELD_MANAGER,
            )
        except ApiException as e:
            if not (is_conflict(e) and ignore_previous_applied):
                raise
            # An unowned leftover of the same name; take it over
            logger.info("Replacing existing %s %s/%s not recorded as owned", kind, owner.namespace, name)
            self._delete(owner, key, name)
            call_k8s(
                f"create_{kind.lower()}",
                self._method(key, "create"),
                namespace=owner.namespace,
                body=obj,
                field_manager=FIELD_MANAGER,
            )
        metrics.apply_operations_total.labels(kind=kind, operation="create").inc()
        logger.debug("Created %s %s/%s", kind, owner.namespace, name)

    def _delete(self, owner: InfraMachine, key: tuple[str, str], name: str) -> None:
        kind = key[1]
        try:
            call_k8s(
                f"delete_{kind.lower()}",
                self._method(key, "delete"),
                name=name,
                namespace=owner.namespace,
                propagation_policy="Background",
            )
        except ApiException as e:
            if not is_not_found(e):
                raise
            return
        metrics.apply_operations_total.labels(kind=kind, operation="delete").inc()
        logger.debug("Deleted %s %s/%s", kind, owner.namespace, name)
