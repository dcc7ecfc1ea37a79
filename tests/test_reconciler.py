import tempfile
import unittest
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from unittest import mock

from src.deployer.context import BuildInfo, JobInfo, ReconcileConfig, ReconcileContext, RepositoryInfo
from src.deployer.errors import (
    ApplyError,
    FormatError,
    MissingConfiguration,
    SchemaError,
    SessionError,
    TemplateError,
    TemplateIOError,
    WorkloadLookupError,
)
from src.deployer.lookup import WorkloadRecord, find_workload
from src.deployer.manifest import DesiredWorkload
from src.deployer.reconciler import ReconcileState, Reconciler

TEMPLATE = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {{ repo.name }}
  namespace: {{ namespace }}
  labels:
    build: "{{ build.number }}"
spec:
  replicas: 2
  template:
    spec:
      containers:
        - name: web
          image: registry.example.com/{{ repo.owner }}/{{ repo.name }}:{{ build.commit }}
"""


class FakeCluster:
    """In-memory stand-in for the cluster API, keyed by (namespace, name)."""

    def __init__(self) -> None:
        self.workloads: Dict[Tuple[str, str], DesiredWorkload] = {}
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.list_error: Optional[Exception] = None
        self.apply_error: Optional[Exception] = None
        self.closed = 0

    def list_workloads(self, namespace: str) -> List[WorkloadRecord]:
        self.calls.append(("list", namespace, None))
        if self.list_error is not None:
            raise self.list_error
        return [
            WorkloadRecord(name=name, namespace=ns, resource_version="1")
            for (ns, name) in sorted(self.workloads)
            if ns == namespace
        ]

    def create_workload(self, namespace: str, workload: DesiredWorkload) -> WorkloadRecord:
        self.calls.append(("create", namespace, workload.name))
        if self.apply_error is not None:
            raise self.apply_error
        self.workloads[(namespace, workload.name)] = workload
        return WorkloadRecord(name=workload.name, namespace=namespace, resource_version="1")

    def update_workload(self, namespace: str, workload: DesiredWorkload) -> WorkloadRecord:
        self.calls.append(("update", namespace, workload.name))
        if self.apply_error is not None:
            raise self.apply_error
        self.workloads[(namespace, workload.name)] = workload
        return WorkloadRecord(name=workload.name, namespace=namespace, resource_version="2")

    def close(self) -> None:
        self.closed += 1

    def seed(self, namespace: str, name: str) -> None:
        self.workloads[(namespace, name)] = None  # type: ignore[assignment]

    def verbs(self) -> List[str]:
        return [call[0] for call in self.calls]


class FindWorkloadTests(unittest.TestCase):
    def test_returns_matching_record(self) -> None:
        cluster = FakeCluster()
        cluster.seed("apps", "other")
        cluster.seed("apps", "app-1")
        record = find_workload(cluster, "app-1", "apps")
        self.assertIsNotNone(record)
        self.assertEqual(record.name, "app-1")

    def test_returns_none_when_absent(self) -> None:
        cluster = FakeCluster()
        cluster.seed("apps", "other")
        self.assertIsNone(find_workload(cluster, "app-1", "apps"))

    def test_empty_namespace_queries_default(self) -> None:
        cluster = FakeCluster()
        cluster.seed("default", "app-1")
        self.assertIsNotNone(find_workload(cluster, "app-1", ""))
        self.assertEqual(cluster.calls, [("list", "default", None)])

    def test_list_failure_raises_lookup_error(self) -> None:
        cluster = FakeCluster()
        cluster.list_error = ConnectionError("connection refused")
        with self.assertRaises(WorkloadLookupError) as ctx:
            find_workload(cluster, "app-1", "apps")
        self.assertEqual(ctx.exception.kind, "LookupError")
        self.assertIn("connection refused", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, ConnectionError)

    def test_api_status_is_summarised(self) -> None:
        class Forbidden(Exception):
            status = 403
            reason = "Forbidden"

        cluster = FakeCluster()
        cluster.list_error = Forbidden("HTTP response body: ...")
        with self.assertRaises(WorkloadLookupError) as ctx:
            find_workload(cluster, "app-1", "apps")
        self.assertIn("(403) Forbidden", str(ctx.exception))


class ReconcilerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.template_path = Path(self.tmpdir.name) / "deployment.yaml"
        self.template_path.write_text(TEMPLATE, encoding="utf-8")
        self.cluster = FakeCluster()
        self.connected: List[ReconcileConfig] = []

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _connect(self, config: ReconcileConfig) -> FakeCluster:
        self.connected.append(config)
        return self.cluster

    def _context(self, **config_overrides) -> ReconcileContext:
        config = {
            "server": "https://kube.example.com",
            "ca": "Y2E=",
            "token": "dG9rZW4=",
            "namespace": "",
            "template": str(self.template_path),
        }
        config.update(config_overrides)
        return ReconcileContext(
            repo=RepositoryInfo(owner="acme", name="app-1"),
            build=BuildInfo(number=12, commit="abc123"),
            job=JobInfo(started=1700000000),
            config=ReconcileConfig(**config),
        )

    def _reconciler(self) -> Reconciler:
        return Reconciler(self._connect)

    def test_creates_when_not_found(self) -> None:
        reconciler = self._reconciler()
        result = reconciler.run(self._context())
        self.assertEqual(str(result), "created app-1")
        self.assertTrue(result.created)
        self.assertEqual(result.namespace, "default")
        self.assertEqual(self.cluster.verbs(), ["list", "create"])
        created = self.cluster.workloads[("default", "app-1")]
        self.assertEqual(created.images, ("registry.example.com/acme/app-1:abc123",))
        self.assertEqual(created.labels, {"build": "12"})
        self.assertEqual(
            reconciler.history,
            [
                ReconcileState.VALIDATING,
                ReconcileState.RENDERING,
                ReconcileState.DECODING,
                ReconcileState.LOOKING_UP,
                ReconcileState.CREATING,
                ReconcileState.DONE,
            ],
        )
        self.assertEqual(self.cluster.closed, 1)

    def test_updates_when_found(self) -> None:
        self.cluster.seed("default", "app-1")
        reconciler = self._reconciler()
        result = reconciler.run(self._context())
        self.assertEqual(str(result), "updated app-1")
        self.assertEqual(self.cluster.verbs(), ["list", "update"])
        self.assertEqual(result.record.resource_version, "2")
        self.assertIn(ReconcileState.UPDATING, reconciler.history)
        self.assertNotIn(ReconcileState.CREATING, reconciler.history)

    def test_lookup_failure_never_applies(self) -> None:
        self.cluster.list_error = RuntimeError("unauthorized")
        reconciler = self._reconciler()
        with self.assertRaises(WorkloadLookupError):
            reconciler.run(self._context())
        self.assertEqual(self.cluster.verbs(), ["list"])
        self.assertEqual(reconciler.state, ReconcileState.FAILED)
        self.assertEqual(reconciler.history[-2:], [ReconcileState.LOOKING_UP, ReconcileState.FAILED])
        self.assertEqual(self.cluster.closed, 1)

    def test_second_run_updates(self) -> None:
        first = self._reconciler().run(self._context())
        second = self._reconciler().run(self._context())
        self.assertEqual(str(first), "created app-1")
        self.assertEqual(str(second), "updated app-1")
        self.assertEqual(self.cluster.verbs(), ["list", "create", "list", "update"])

    def test_namespace_is_rendered_into_manifest(self) -> None:
        result = self._reconciler().run(self._context(namespace="staging"))
        self.assertEqual(result.namespace, "staging")
        self.assertEqual(self.cluster.calls[0], ("list", "staging", None))
        self.assertIn(("staging", "app-1"), self.cluster.workloads)

    def test_apply_failure_raises_apply_error(self) -> None:
        self.cluster.apply_error = RuntimeError("admission webhook denied")
        reconciler = self._reconciler()
        with self.assertRaises(ApplyError) as ctx:
            reconciler.run(self._context())
        self.assertIn("admission webhook denied", str(ctx.exception))
        self.assertIn("create", str(ctx.exception))
        self.assertEqual(reconciler.state, ReconcileState.FAILED)

    def test_close_failure_does_not_mask_apply_error(self) -> None:
        self.cluster.apply_error = RuntimeError("admission webhook denied")
        self.cluster.close = mock.Mock(side_effect=OSError("pool already closed"))
        reconciler = self._reconciler()
        with self.assertRaises(ApplyError) as ctx:
            reconciler.run(self._context())
        self.assertIn("admission webhook denied", str(ctx.exception))
        self.assertEqual(reconciler.state, ReconcileState.FAILED)
        self.cluster.close.assert_called_once_with()

    def test_close_failure_after_success_is_ignored(self) -> None:
        self.cluster.close = mock.Mock(side_effect=OSError("pool already closed"))
        result = self._reconciler().run(self._context())
        self.assertEqual(str(result), "created app-1")

    def test_missing_configuration_fails_before_io(self) -> None:
        reconciler = self._reconciler()
        with self.assertRaises(MissingConfiguration) as ctx:
            reconciler.run(self._context(token="", template="/does/not/exist.yaml"))
        self.assertEqual(ctx.exception.field, "token")
        self.assertEqual(reconciler.history, [ReconcileState.VALIDATING, ReconcileState.FAILED])
        self.assertEqual(self.connected, [])
        self.assertEqual(self.cluster.calls, [])

    def test_missing_template_file(self) -> None:
        with self.assertRaises(TemplateIOError):
            self._reconciler().run(self._context(template=str(self.template_path) + ".missing"))
        self.assertEqual(self.connected, [])

    def test_unknown_placeholder_stops_before_cluster(self) -> None:
        self.template_path.write_text(TEMPLATE + "# {{ repo.unknown }}\n", encoding="utf-8")
        with self.assertRaises(TemplateError):
            self._reconciler().run(self._context())
        self.assertEqual(self.connected, [])
        self.assertEqual(self.cluster.workloads, {})

    def test_malformed_manifest(self) -> None:
        self.template_path.write_text("metadata: [\n", encoding="utf-8")
        with self.assertRaises(FormatError):
            self._reconciler().run(self._context())
        self.assertEqual(self.connected, [])

    def test_manifest_without_name(self) -> None:
        self.template_path.write_text(TEMPLATE.replace("  name: {{ repo.name }}\n", ""), encoding="utf-8")
        with self.assertRaises(SchemaError):
            self._reconciler().run(self._context())
        self.assertEqual(self.cluster.calls, [])

    def test_connect_failure_becomes_session_error(self) -> None:
        def broken(_config: ReconcileConfig) -> FakeCluster:
            raise OSError("no route to host")

        reconciler = Reconciler(broken)
        with self.assertRaises(SessionError) as ctx:
            reconciler.run(self._context())
        self.assertIn("no route to host", str(ctx.exception))
        self.assertEqual(reconciler.state, ReconcileState.FAILED)

    def test_connect_receives_validated_config(self) -> None:
        self._reconciler().run(self._context(namespace=""))
        self.assertEqual(len(self.connected), 1)
        self.assertEqual(self.connected[0].namespace, "default")
        self.assertEqual(self.connected[0].server, "https://kube.example.com")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
