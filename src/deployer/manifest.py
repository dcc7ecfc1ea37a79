from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import FormatError, SchemaError

# (apiVersion, kind) pairs the decoder accepts.
SUPPORTED_SCHEMAS = {("apps/v1", "Deployment")}


class _ManifestModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ObjectMeta(_ManifestModel):
    name: str = Field(..., min_length=1, description="Workload identity within its namespace")
    namespace: Optional[str] = Field(default=None, description="Empty means the default namespace")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class ContainerSpec(_ManifestModel):
    name: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)


class PodSpec(_ManifestModel):
    containers: List[ContainerSpec] = Field(..., min_length=1)


class PodTemplateSpec(_ManifestModel):
    metadata: Dict[str, Any] = Field(default_factory=dict)
    spec: PodSpec


class DeploymentSpec(_ManifestModel):
    replicas: Optional[int] = Field(default=None, ge=0)
    selector: Dict[str, Any] = Field(default_factory=dict)
    template: PodTemplateSpec


class DeploymentManifest(_ManifestModel):
    api_version: str = Field(..., alias="apiVersion")
    kind: str
    metadata: ObjectMeta
    spec: DeploymentSpec


@dataclass(frozen=True)
class DesiredWorkload:
    name: str
    namespace: str
    api_version: str
    kind: str
    spec: Dict[str, Any]
    body: Dict[str, Any]
    labels: Dict[str, str] = field(default_factory=dict)
    replicas: Optional[int] = None
    images: Tuple[str, ...] = ()


def parse_manifest(text: str) -> Dict[str, Any]:
    """Parse rendered text into a generic mapping tree.

    Exactly one non-empty YAML document whose root is a mapping is accepted.
    """

    try:
        documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as exc:
        raise FormatError(f"rendered manifest is not valid YAML: {exc}") from exc
    if not documents:
        raise FormatError("rendered manifest is empty")
    if len(documents) > 1:
        raise FormatError(
            f"rendered manifest holds {len(documents)} documents; exactly one workload is supported"
        )
    tree = documents[0]
    if not isinstance(tree, dict):
        raise FormatError(f"rendered manifest must be a mapping, got {type(tree).__name__}")
    return tree


def decode_workload(tree: Dict[str, Any]) -> DesiredWorkload:
    identity = (tree.get("apiVersion"), tree.get("kind"))
    if not all(isinstance(value, str) for value in identity):
        raise SchemaError(
            f"apiVersion and kind must be strings, got apiVersion={identity[0]!r} kind={identity[1]!r}"
        )
    if identity not in SUPPORTED_SCHEMAS:
        supported = ", ".join(f"{api}/{kind}" for api, kind in sorted(SUPPORTED_SCHEMAS))
        raise SchemaError(
            f"unsupported manifest schema apiVersion={identity[0]!r} kind={identity[1]!r} "
            f"(supported: {supported})"
        )
    try:
        manifest = DeploymentManifest.model_validate(tree)
    except ValidationError as exc:
        raise SchemaError(f"manifest does not match {identity[0]} {identity[1]}: {_describe(exc)}") from exc

    body = copy.deepcopy(tree)
    containers = manifest.spec.template.spec.containers
    return DesiredWorkload(
        name=manifest.metadata.name,
        namespace=manifest.metadata.namespace or "",
        api_version=manifest.api_version,
        kind=manifest.kind,
        spec=body["spec"],
        body=body,
        labels=dict(manifest.metadata.labels),
        replicas=manifest.spec.replicas,
        images=tuple(container.image for container in containers),
    )


def decode_manifest(text: str) -> DesiredWorkload:
    return decode_workload(parse_manifest(text))


def _describe(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(problems)


__all__ = [
    "SUPPORTED_SCHEMAS",
    "DeploymentManifest",
    "DesiredWorkload",
    "decode_manifest",
    "decode_workload",
    "parse_manifest",
]
