"""Safe etcd member removal checks against downstream clusters."""

from __future__ import annotations

import logging
from typing import Any

from kubernetes import client, config

from ..utils.errors import is_not_found
from .kube import call_k8s

logger = logging.getLogger(__name__)


def remove_annotation(runtime: str) -> str:
    """Annotation requesting removal of a node's etcd member."""
    return f"etcd.{runtime}.cattle.io/remove"


def removed_annotation(runtime: str) -> str:
    """Annotation the runtime sets once the member has left the quorum."""
    return f"etcd.{runtime}.cattle.io/removed"


class NodeAnnotationEtcdMembership:
    """Coordinates member removal through annotations on the downstream node."""

    def core_api(self, kubeconfig: dict[str, Any]) -> client.CoreV1Api:
        return client.CoreV1Api(config.new_client_from_config_dict(kubeconfig))

    def safely_removed(self, kubeconfig: dict[str, Any], runtime: str, node_name: str) -> bool:
        """Check whether the node's etcd member is gone, requesting removal if not.

        Returns:
            True when the node no longer exists or reports its member removed
        """
        api = self.core_api(kubeconfig)
        try:
            node = call_k8s("get_downstream_node", api.read_node, name=node_name)
        except client.exceptions.ApiException as e:
            if is_not_found(e):
                return True
            raise

        annotations = (node.metadata and node.metadata.annotations) or {}
        if annotations.get(removed_annotation(runtime)) == "true":
            return True

        if annotations.get(remove_annotation(runtime)) != "true":
            logger.info("Requesting etcd member removal for node %s", node_name)
            call_k8s(
                "patch_downstream_node",
                api.patch_node,
                name=node_name,
                body={"metadata": {"annotations": {remove_annotation(runtime): "true"}}},
            )
        return False
