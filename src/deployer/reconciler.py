"""Create-or-update reconciliation of a single rendered workload."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .context import ReconcileConfig, ReconcileContext, resolve_namespace, validate_config
from .errors import ApplyError, DeployError, SessionError
from .lookup import WorkloadClient, WorkloadRecord, find_workload, summarise_error
from .manifest import DesiredWorkload, decode_manifest
from .template import TemplateRenderer

logger = logging.getLogger(__name__)

Connector = Callable[[ReconcileConfig], WorkloadClient]


class ReconcileState(str, Enum):
    VALIDATING = "Validating"
    RENDERING = "Rendering"
    DECODING = "Decoding"
    LOOKING_UP = "LookingUp"
    CREATING = "Creating"
    UPDATING = "Updating"
    DONE = "Done"
    FAILED = "Failed"


@dataclass(frozen=True)
class ReconcileResult:
    action: str
    name: str
    namespace: str
    record: Optional[WorkloadRecord] = None

    @property
    def created(self) -> bool:
        return self.action == "created"

    def __str__(self) -> str:
        return f"{self.action} {self.name}"


class Reconciler:
    """Runs validate -> render -> decode -> lookup -> create/update once.

    ``connect`` builds the cluster client from the validated configuration; it
    is only called once the manifest has decoded. The first error ends the
    run and is re-raised unchanged after the state moves to ``FAILED``.
    """

    def __init__(self, connect: Connector, renderer: Optional[TemplateRenderer] = None) -> None:
        self.connect = connect
        self.renderer = renderer or TemplateRenderer()
        self.state: Optional[ReconcileState] = None
        self.history: List[ReconcileState] = []

    def run(self, context: ReconcileContext) -> ReconcileResult:
        self.history = []
        try:
            return self._run(context)
        except DeployError as exc:
            failed_in = self.state
            self._enter(ReconcileState.FAILED)
            logger.debug("Reconciliation failed while %s: %s", failed_in.value if failed_in else "starting", exc)
            raise

    def _run(self, context: ReconcileContext) -> ReconcileResult:
        self._enter(ReconcileState.VALIDATING)
        config = validate_config(context.config)

        self._enter(ReconcileState.RENDERING)
        rendered = self.renderer.render_file(config.template, context)

        self._enter(ReconcileState.DECODING)
        workload = decode_manifest(rendered)
        namespace = resolve_namespace(workload.namespace)

        self._enter(ReconcileState.LOOKING_UP)
        client = self._open_client(config)
        try:
            existing = find_workload(client, workload.name, namespace)
            if existing is not None:
                self._enter(ReconcileState.UPDATING)
                record = self._apply(client.update_workload, "update", namespace, workload)
                action = "updated"
            else:
                self._enter(ReconcileState.CREATING)
                record = self._apply(client.create_workload, "create", namespace, workload)
                action = "created"
        finally:
            self._close_client(client)

        self._enter(ReconcileState.DONE)
        logger.info("%s deployment %s in namespace %s", action.capitalize(), workload.name, namespace)
        return ReconcileResult(action=action, name=workload.name, namespace=namespace, record=record)

    def _open_client(self, config: ReconcileConfig) -> WorkloadClient:
        try:
            return self.connect(config)
        except DeployError:
            raise
        except Exception as exc:
            raise SessionError(f"cannot connect to {config.server}: {summarise_error(exc)}") from exc

    @staticmethod
    def _close_client(client: WorkloadClient) -> None:
        # A close failure must not mask the error that ended the run.
        try:
            client.close()
        except Exception as exc:
            logger.debug("Ignoring error while closing cluster client: %s", exc)

    @staticmethod
    def _apply(
        operation: Callable[[str, DesiredWorkload], WorkloadRecord],
        verb: str,
        namespace: str,
        workload: DesiredWorkload,
    ) -> WorkloadRecord:
        try:
            return operation(namespace, workload)
        except DeployError:
            raise
        except Exception as exc:
            raise ApplyError(
                f"failed to {verb} {workload.kind} {namespace}/{workload.name}: {summarise_error(exc)}"
            ) from exc

    def _enter(self, state: ReconcileState) -> None:
        logger.debug("Reconciler state -> %s", state.value)
        self.state = state
        self.history.append(state)


__all__ = ["Connector", "ReconcileResult", "ReconcileState", "Reconciler"]
