import unittest

from src.common.errors import ConfigurationError
from src.common.kinds import KINDS
from src.model.descriptor import ResourceDescriptor
from src.patcher.patcher import EntityPatcher, PatchDispatcher, merge_metadata
from tests.fake_cluster import FakeCluster

DEPLOYMENT = {
    "apiVersion": "apps/v1",
    "kind": "Deployment",
    "metadata": {"name": "web", "namespace": "ns1", "labels": {"app": "web"}},
    "spec": {
        "replicas": 2,
        "selector": {"matchLabels": {"app": "web"}},
        "template": {
            "metadata": {"labels": {"app": "web"}},
            "spec": {"containers": [{"name": "web", "image": "nginx:1.25"}]},
        },
    },
}


def _desired(manifest: dict, **changes) -> ResourceDescriptor:
    descriptor = ResourceDescriptor.from_dict(manifest)
    for key, value in changes.items():
        descriptor.body[key] = value
    return descriptor


class PatchDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cluster = FakeCluster()
        self.dispatcher = PatchDispatcher()

    def _patch(self, desired: ResourceDescriptor, namespace: str = "ns1") -> dict:
        old = self.cluster.stored(desired.kind, namespace, desired.name)
        return self.dispatcher.patch(self.cluster, namespace, desired, ResourceDescriptor(old))

    def test_metadata_only_change_leaves_spec_untouched(self) -> None:
        self.cluster.seed(DEPLOYMENT)
        desired = _desired(DEPLOYMENT)
        desired.metadata["labels"] = {"app": "web", "tier": "frontend"}

        result = self._patch(desired)

        ops = self.cluster.patches[-1]["ops"]
        paths = [op["path"] for op in ops]
        self.assertTrue(all(not path.startswith("/spec") for path in paths))
        self.assertIn("/metadata/labels/tier", paths)
        self.assertEqual(result["metadata"]["labels"]["tier"], "frontend")

    def test_carries_old_resource_version_as_test_operation(self) -> None:
        seeded = self.cluster.seed(DEPLOYMENT)
        desired = _desired(DEPLOYMENT)
        desired.body["spec"]["replicas"] = 4

        self._patch(desired)

        ops = self.cluster.patches[-1]["ops"]
        self.assertEqual(ops[0], {"op": "test", "path": "/metadata/resourceVersion", "value": seeded["metadata"]["resourceVersion"]})
        self.assertEqual(desired.resource_version, seeded["metadata"]["resourceVersion"])

    def test_equal_resources_issue_no_edit(self) -> None:
        seeded = self.cluster.seed(DEPLOYMENT)
        result = self._patch(_desired(DEPLOYMENT))
        self.assertEqual(result["metadata"]["resourceVersion"], seeded["metadata"]["resourceVersion"])
        self.assertNotIn("edit", self.cluster.verbs())

    def test_server_managed_metadata_is_preserved(self) -> None:
        seeded = self.cluster.seed(DEPLOYMENT)
        desired = _desired(DEPLOYMENT)
        desired.metadata["annotations"] = {"owner": "team-a"}

        result = self._patch(desired)

        self.assertEqual(result["metadata"]["uid"], seeded["metadata"]["uid"])
        self.assertEqual(result["metadata"]["creationTimestamp"], seeded["metadata"]["creationTimestamp"])
        self.assertEqual(result["metadata"]["annotations"], {"owner": "team-a"})

    def test_secret_string_data_is_sent_as_encoded_data(self) -> None:
        secret = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": "creds", "namespace": "ns1"},
            "type": "Opaque",
            "data": {"user": "YWRtaW4="},
            "stringData": {"token": "abc"},
        }
        self.cluster.seed(secret)
        desired = _desired(secret)
        desired.body["stringData"] = {"token": "xyz"}

        result = self._patch(desired)

        paths = {op["path"] for op in self.cluster.patches[-1]["ops"] if op["op"] != "test"}
        self.assertEqual(paths, {"/data/token"})
        self.assertEqual(result["data"], {"user": "YWRtaW4=", "token": "eHl6"})
        self.assertNotIn("stringData", result)

    def test_job_patches_template_without_touching_selector(self) -> None:
        job = {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": {"name": "migrate", "namespace": "ns1"},
            "spec": {
                "selector": {"matchLabels": {"controller-uid": "1234"}},
                "template": {"spec": {"containers": [{"name": "m", "image": "migrate:1"}], "restartPolicy": "Never"}},
            },
        }
        self.cluster.seed(job)
        desired = _desired(job)
        desired.body["spec"]["template"]["spec"]["containers"][0]["image"] = "migrate:2"

        result = self._patch(desired)

        paths = [op["path"] for op in self.cluster.patches[-1]["ops"] if op["op"] != "test"]
        self.assertTrue(paths)
        self.assertTrue(all(path.startswith("/spec/template") for path in paths))
        self.assertEqual(result["spec"]["selector"], job["spec"]["selector"])

    def test_server_populated_spec_fields_survive(self) -> None:
        service = {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "svc", "namespace": "ns1"},
            "spec": {"selector": {"app": "web"}, "ports": [{"port": 8080}]},
        }
        live = dict(service, spec=dict(service["spec"], clusterIP="10.0.0.12", type="ClusterIP"))
        self.cluster.seed(live)
        desired = _desired(service)
        desired.body["spec"] = {"selector": {"app": "web"}, "ports": [{"port": 9090}]}

        result = self._patch(desired)

        self.assertEqual(result["spec"]["clusterIP"], "10.0.0.12")
        self.assertEqual(result["spec"]["ports"], [{"port": 9090}])
        self.assertFalse(any(op["op"] == "remove" for op in self.cluster.patches[-1]["ops"]))

    def test_change_outside_owned_sections_sends_nothing(self) -> None:
        job = {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": {"name": "migrate", "namespace": "ns1"},
            "spec": {"backoffLimit": 1, "template": {"spec": {"containers": [{"name": "m", "image": "migrate:1"}]}}},
        }
        seeded = self.cluster.seed(job)
        desired = _desired(job)
        desired.body["spec"]["backoffLimit"] = 4

        result = self._patch(desired)

        self.assertEqual(result["metadata"]["resourceVersion"], seeded["metadata"]["resourceVersion"])
        self.assertNotIn("edit", self.cluster.verbs())
        old = ResourceDescriptor(self.cluster.stored("Job", "ns1", "migrate"))
        self.assertEqual(self.dispatcher.unowned_changes(desired, old), ["spec.backoffLimit"])

    def test_role_rules_are_patched(self) -> None:
        role = {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "Role",
            "metadata": {"name": "reader", "namespace": "ns1"},
            "rules": [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get"]}],
        }
        self.cluster.seed(role)
        desired = _desired(role)
        desired.body["rules"][0]["verbs"] = ["get", "list"]

        result = self._patch(desired)

        self.assertEqual(result["rules"][0]["verbs"], ["get", "list"])
        paths = [op["path"] for op in self.cluster.patches[-1]["ops"] if op["op"] != "test"]
        self.assertTrue(all(path.startswith("/rules") for path in paths))

    def test_top_level_fields_of_storage_class_are_owned(self) -> None:
        storage_class = {
            "apiVersion": "storage.k8s.io/v1",
            "kind": "StorageClass",
            "metadata": {"name": "fast"},
            "provisioner": "kubernetes.io/no-provisioner",
            "allowVolumeExpansion": False,
        }
        self.cluster.seed(storage_class)
        desired = _desired(storage_class)
        desired.body["allowVolumeExpansion"] = True

        result = self.dispatcher.patch(
            self.cluster, None, desired, ResourceDescriptor(self.cluster.stored("StorageClass", None, "fast"))
        )

        self.assertTrue(result["allowVolumeExpansion"])
        self.assertEqual(self.cluster.patches[-1]["namespace"], None)

    def test_every_patched_table_kind_has_a_strategy(self) -> None:
        handled_elsewhere = {"Namespace", "Project", "OAuthClient", "Template"}
        missing = [kind for kind in KINDS if kind not in handled_elsewhere and not self.dispatcher.supports(kind)]
        self.assertEqual(missing, [])

    def test_unregistered_kind_raises(self) -> None:
        desired = ResourceDescriptor.from_dict({"kind": "Widget", "metadata": {"name": "w"}})
        with self.assertRaises(ConfigurationError):
            self.dispatcher.patch(self.cluster, "ns1", desired, desired.copy())
        self.assertEqual(self.cluster.calls, [])

    def test_register_custom_patcher(self) -> None:
        dispatcher = PatchDispatcher({})
        self.assertFalse(dispatcher.supports("ConfigMap"))
        dispatcher.register("ConfigMap", EntityPatcher(("data",)))
        self.assertTrue(dispatcher.supports("ConfigMap"))


class MergeMetadataTests(unittest.TestCase):
    def test_keeps_server_fields_and_controller_annotations(self) -> None:
        live = {
            "name": "web",
            "namespace": "ns1",
            "uid": "u-1",
            "resourceVersion": "10",
            "annotations": {"deployment.kubernetes.io/revision": "4", "old": "x"},
            "labels": {"app": "web"},
        }
        merged = merge_metadata(live, {"name": "web", "labels": {"app": "web", "v": "2"}})
        self.assertEqual(merged["uid"], "u-1")
        self.assertEqual(merged["namespace"], "ns1")
        self.assertEqual(merged["annotations"], {"deployment.kubernetes.io/revision": "4"})
        self.assertEqual(merged["labels"], {"app": "web", "v": "2"})


if __name__ == "__main__":
    unittest.main()
