"""Render a Deployment manifest from build metadata and create or update it."""

from .context import BuildInfo, JobInfo, ReconcileConfig, ReconcileContext, RepositoryInfo
from .errors import DeployError
from .manifest import DesiredWorkload
from .reconciler import ReconcileResult, ReconcileState, Reconciler

__all__ = [
    "BuildInfo",
    "DeployError",
    "DesiredWorkload",
    "JobInfo",
    "ReconcileConfig",
    "ReconcileContext",
    "ReconcileResult",
    "ReconcileState",
    "Reconciler",
    "RepositoryInfo",
]
