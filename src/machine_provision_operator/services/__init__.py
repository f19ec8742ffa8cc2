"""Kubernetes-backed collaborators of the provisioner."""
