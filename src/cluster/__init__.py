"""Kubernetes API adapter used by the deployer."""

from .client import ClientOptions, KubernetesWorkloadClient, connect

__all__ = ["ClientOptions", "KubernetesWorkloadClient", "connect"]
