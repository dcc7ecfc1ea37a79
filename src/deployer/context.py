"""Pipeline metadata and connection settings for a single deployment run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import MissingConfiguration

DEFAULT_NAMESPACE = "default"

# Checked in this order; the first empty one is reported.
_REQUIRED_FIELDS = (
    ("server", "KUBE_SERVER"),
    ("token", "KUBE_TOKEN"),
    ("ca", "KUBE_CA"),
    ("template", "KUBE_TEMPLATE"),
)


@dataclass(frozen=True)
class RepositoryInfo:
    owner: str = ""
    name: str = ""


@dataclass(frozen=True)
class BuildInfo:
    tag: str = ""
    event: str = ""
    number: int = 0
    commit: str = ""
    ref: str = ""
    branch: str = ""
    author: str = ""
    status: str = ""
    link: str = ""
    started: int = 0
    created: int = 0


@dataclass(frozen=True)
class JobInfo:
    started: int = 0


@dataclass
class ReconcileConfig:
    server: str = ""
    ca: str = field(default="", repr=False)
    token: str = field(default="", repr=False)
    namespace: str = ""
    template: str = ""


@dataclass(frozen=True)
class ReconcileContext:
    repo: RepositoryInfo
    build: BuildInfo
    job: JobInfo
    config: ReconcileConfig

    def template_vars(self) -> Dict[str, Any]:
        # Credentials stay out of the template namespace.
        return {
            "repo": self.repo,
            "build": self.build,
            "job": self.job,
            "namespace": resolve_namespace(self.config.namespace),
        }


def resolve_namespace(namespace: Optional[str]) -> str:
    return namespace or DEFAULT_NAMESPACE


def validate_config(config: ReconcileConfig) -> ReconcileConfig:
    """Fail on the first missing required setting and default the namespace.

    The namespace is the only field written; it is filled with
    ``DEFAULT_NAMESPACE`` when empty.
    """

    for name, envvar in _REQUIRED_FIELDS:
        if not getattr(config, name):
            raise MissingConfiguration(name, envvar)
    if not config.namespace:
        config.namespace = DEFAULT_NAMESPACE
    return config


__all__ = [
    "DEFAULT_NAMESPACE",
    "BuildInfo",
    "JobInfo",
    "ReconcileConfig",
    "ReconcileContext",
    "RepositoryInfo",
    "resolve_namespace",
    "validate_config",
]
