"""Downstream cluster kubeconfig lookup."""

from __future__ import annotations

from typing import Any

import yaml
from kubernetes import client

from ..utils.errors import ReconcileError
from ..utils.secrets import get_secret_value

KUBECONFIG_SECRET_SUFFIX = "-kubeconfig"
KUBECONFIG_SECRET_KEY = "value"


def kubeconfig_secret_name(cluster_name: str) -> str:
    return f"{cluster_name}{KUBECONFIG_SECRET_SUFFIX}"


class SecretKubeconfigProvider:
    """Reads the kubeconfig the provisioning cluster publishes as a secret."""

    def __init__(self, api: client.CoreV1Api):
        self.api = api

    def get_kubeconfig(self, cluster: dict[str, Any]) -> dict[str, Any]:
        """Return the parsed kubeconfig of a provisioning cluster.

        Raises:
            ReconcileError: If the secret is missing or does not hold a kubeconfig
        """
        metadata = cluster.get("metadata") or {}
        namespace = metadata.get("namespace", "")
        secret_name = kubeconfig_secret_name(metadata.get("name", ""))

        try:
            raw = get_secret_value(self.api, namespace, secret_name, KUBECONFIG_SECRET_KEY)
        except ValueError as e:
            raise ReconcileError(f"kubeconfig for cluster {namespace}/{metadata.get('name')} unavailable: {e}") from e

        try:
            kubeconfig = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ReconcileError(f"kubeconfig secret {namespace}/{secret_name} is not valid YAML") from e
        if not isinstance(kubeconfig, dict):
            raise ReconcileError(f"kubeconfig secret {namespace}/{secret_name} is not a kubeconfig")
        return kubeconfig
