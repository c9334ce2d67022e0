import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import typer

from src.apply import cli as apply_cli
from src.common.errors import ConfigurationError
from src.gateway.base import GatewayError
from tests.fake_cluster import FakeCluster

BUNDLE = """\
apiVersion: v1
kind: Namespace
metadata:
  name: shop
---
apiVersion: v1
kind: Service
metadata:
  name: web
  namespace: shop
spec:
  selector:
    app: web
  ports:
    - port: 80
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: web-config
  namespace: shop
data:
  LOG_LEVEL: info
"""


class ApplyCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.base = Path(self.tmpdir.name)
        self.manifests = self.base / "manifests"
        self.manifests.mkdir()
        (self.manifests / "bundle.yaml").write_text(BUNDLE, encoding="utf-8")
        self.out = self.base / "outcomes.json"
        self.cluster = FakeCluster()
        patcher = mock.patch.object(apply_cli, "_build_gateway", return_value=self.cluster)
        self.build_gateway = patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _invoke(self, **kwargs) -> None:
        apply_cli.apply(
            inputs=kwargs.get("inputs", [self.manifests]),
            config=kwargs.get("config"),
            namespace=kwargs.get("namespace"),
            context=kwargs.get("context"),
            recreate=kwargs.get("recreate"),
            log_json_dir=kwargs.get("log_json_dir"),
            out=self.out,
            verbose=False,
        )

    def _outcomes(self) -> list:
        return json.loads(self.out.read_text(encoding="utf-8"))

    def test_apply_directory_writes_outcomes(self) -> None:
        self._invoke(context="staging")

        outcomes = self._outcomes()
        self.assertEqual([o["kind"] for o in outcomes], ["Namespace", "Service", "ConfigMap"])
        self.assertTrue(all(o["action"] == "CREATED" for o in outcomes))
        self.build_gateway.assert_called_once_with("staging", "k8s-apply")

    def test_second_run_is_noop(self) -> None:
        self._invoke()
        self._invoke()
        self.assertTrue(all(o["action"] == "NOOP" for o in self._outcomes()))

    def test_config_file_and_flags_are_merged(self) -> None:
        config = self.base / "apply.yaml"
        config.write_text("apply:\n  allowCreate: false\n", encoding="utf-8")
        self._invoke(config=config)

        actions = {o["kind"]: o["action"] for o in self._outcomes()}
        self.assertEqual(actions["Service"], "SKIPPED_WARN")
        self.assertEqual(actions["ConfigMap"], "SKIPPED_WARN")

    def test_gateway_failure_exits_with_code_one(self) -> None:
        self.cluster.fail("create", "ConfigMap", GatewayError("quota exceeded", status=403))

        with self.assertRaises(typer.Exit) as ctx:
            self._invoke()

        self.assertEqual(ctx.exception.exit_code, 1)
        kinds = [o["kind"] for o in self._outcomes()]
        self.assertEqual(kinds, ["Namespace", "Service"])

    def test_unloadable_cluster_config_is_bad_parameter(self) -> None:
        self.build_gateway.side_effect = ConfigurationError("Unable to load cluster configuration: no kubeconfig")
        with self.assertRaises(typer.BadParameter):
            self._invoke()
        self.assertFalse(self.out.exists())

    def test_unreachable_cluster_exits_with_code_one(self) -> None:
        self.build_gateway.side_effect = GatewayError("connect to the cluster: connection refused")
        with self.assertRaises(typer.Exit) as ctx:
            self._invoke()
        self.assertEqual(ctx.exception.exit_code, 1)

    def test_missing_input_is_bad_parameter(self) -> None:
        with self.assertRaises(typer.BadParameter):
            self._invoke(inputs=[self.base / "nope.yaml"])

    def test_unknown_kind_is_bad_parameter(self) -> None:
        odd = self.base / "odd.yaml"
        odd.write_text("kind: Gizmo\nmetadata:\n  name: g\n", encoding="utf-8")
        with self.assertRaises(typer.BadParameter):
            self._invoke(inputs=[odd])
        self.assertEqual(self.cluster.mutating_calls(), [])


if __name__ == "__main__":
    unittest.main()
