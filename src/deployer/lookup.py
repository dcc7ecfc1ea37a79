from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from .context import resolve_namespace
from .errors import DeployError, WorkloadLookupError
from .manifest import DesiredWorkload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkloadRecord:
    name: str
    namespace: str
    resource_version: Optional[str] = None
    replicas: Optional[int] = None


class WorkloadClient(Protocol):
    """Cluster operations the reconciler depends on."""

    def list_workloads(self, namespace: str) -> Sequence[WorkloadRecord]:
        ...

    def create_workload(self, namespace: str, workload: DesiredWorkload) -> WorkloadRecord:
        ...

    def update_workload(self, namespace: str, workload: DesiredWorkload) -> WorkloadRecord:
        ...

    def close(self) -> None:
        ...


def find_workload(
    client: WorkloadClient, name: str, namespace: Optional[str]
) -> Optional[WorkloadRecord]:
    """Return the workload called ``name`` in ``namespace`` or ``None``.

    A failed list call is an error; it is never treated as "not found".
    """

    namespace = resolve_namespace(namespace)
    try:
        records = client.list_workloads(namespace)
    except DeployError:
        raise
    except Exception as exc:
        raise WorkloadLookupError(
            f"cannot list workloads in namespace {namespace!r}: {summarise_error(exc)}"
        ) from exc
    logger.debug("Found %d workload(s) in namespace %s", len(records), namespace)
    for record in records:
        if record.name == name:
            return record
    return None


def summarise_error(exc: Exception) -> str:
    # kubernetes ApiException carries status and reason; its str() spans several lines.
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None)
    if status is not None and reason:
        return f"({status}) {reason}"
    return str(exc) or type(exc).__name__


__all__ = ["WorkloadClient", "WorkloadRecord", "find_workload", "summarise_error"]
