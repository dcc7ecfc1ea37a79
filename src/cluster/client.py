from __future__ import annotations

import base64
import binascii
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from kubernetes import client

from src.deployer.context import ReconcileConfig
from src.deployer.errors import SessionError
from src.deployer.lookup import WorkloadRecord
from src.deployer.manifest import DesiredWorkload

logger = logging.getLogger(__name__)


@dataclass
class ClientOptions:
    server: str
    ca: str = field(repr=False)
    token: str = field(repr=False)
    request_timeout: Optional[float] = None


class KubernetesWorkloadClient:
    """apps/v1 Deployment operations against a single cluster.

    The CA bundle is written to a private temporary file because the
    kubernetes client only accepts a path; ``close()`` removes it.
    """

    def __init__(
        self,
        api: client.AppsV1Api,
        *,
        request_timeout: Optional[float] = None,
        ca_file: Optional[Path] = None,
    ) -> None:
        self.api = api
        self.request_timeout = request_timeout
        self.ca_file = ca_file

    @classmethod
    def from_options(cls, options: ClientOptions) -> "KubernetesWorkloadClient":
        ca_data = _decode_b64(options.ca, "CA certificate")
        try:
            token = _decode_b64(options.token, "token").decode("utf-8").strip()
        except UnicodeDecodeError as exc:
            raise SessionError("token is not valid UTF-8 once decoded") from exc
        if not token:
            raise SessionError("token is empty once decoded")

        ca_file = _write_ca_file(ca_data)
        configuration = client.Configuration()
        configuration.host = options.server
        configuration.ssl_ca_cert = str(ca_file)
        configuration.verify_ssl = True
        configuration.api_key = {"authorization": token}
        configuration.api_key_prefix = {"authorization": "Bearer"}
        try:
            api_client = client.ApiClient(configuration)
        except Exception as exc:
            ca_file.unlink(missing_ok=True)
            raise SessionError(f"cannot build API client for {options.server}: {exc}") from exc
        logger.debug("Connected API client to %s", options.server)
        return cls(client.AppsV1Api(api_client), request_timeout=options.request_timeout, ca_file=ca_file)

    def list_workloads(self, namespace: str) -> List[WorkloadRecord]:
        response = self.api.list_namespaced_deployment(namespace=namespace, **self._call_kwargs())
        return [_to_record(item, namespace) for item in response.items or []]

    def create_workload(self, namespace: str, workload: DesiredWorkload) -> WorkloadRecord:
        created = self.api.create_namespaced_deployment(
            namespace=namespace, body=workload.body, **self._call_kwargs()
        )
        return _to_record(created, namespace)

    def update_workload(self, namespace: str, workload: DesiredWorkload) -> WorkloadRecord:
        # Full replace; no resourceVersion precondition is added.
        replaced = self.api.replace_namespaced_deployment(
            name=workload.name, namespace=namespace, body=workload.body, **self._call_kwargs()
        )
        return _to_record(replaced, namespace)

    def close(self) -> None:
        api_client = getattr(self.api, "api_client", None)
        if api_client is not None:
            api_client.close()
        if self.ca_file is not None:
            self.ca_file.unlink(missing_ok=True)
            self.ca_file = None

    def _call_kwargs(self) -> Dict[str, Any]:
        if self.request_timeout:
            return {"_request_timeout": self.request_timeout}
        return {}


def connect(config: ReconcileConfig, request_timeout: Optional[float] = None) -> KubernetesWorkloadClient:
    options = ClientOptions(
        server=config.server,
        ca=config.ca,
        token=config.token,
        request_timeout=request_timeout,
    )
    return KubernetesWorkloadClient.from_options(options)


def _decode_b64(value: str, label: str) -> bytes:
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SessionError(f"{label} is not valid base64: {exc}") from exc


def _write_ca_file(data: bytes) -> Path:
    fd, name = tempfile.mkstemp(prefix="kube-deploy-ca-", suffix=".crt")
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
    return Path(name)


def _to_record(item: Any, namespace: str) -> WorkloadRecord:
    metadata = item.metadata
    spec = getattr(item, "spec", None)
    return WorkloadRecord(
        name=metadata.name,
        namespace=metadata.namespace or namespace,
        resource_version=metadata.resource_version,
        replicas=getattr(spec, "replicas", None),
    )


__all__ = ["ClientOptions", "KubernetesWorkloadClient", "connect"]
