import unittest

from src.compare.equivalence import config_equal, metadata_equal, quantity_equal, resources_equal, section_equal


def _service(port: int, **metadata) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "svc1", **metadata},
        "spec": {"selector": {"app": "web"}, "ports": [{"port": port, "targetPort": 8080}]},
    }


class ConfigEqualTests(unittest.TestCase):
    def test_none_and_empty_collections_are_equivalent(self) -> None:
        self.assertTrue(config_equal(None, []))
        self.assertTrue(config_equal({}, None))
        self.assertTrue(config_equal("", None))

    def test_label_maps_ignore_key_order(self) -> None:
        self.assertTrue(config_equal({"a": "1", "b": "2"}, {"b": "2", "a": "1"}, "labels"))

    def test_label_maps_compare_key_sets_exactly(self) -> None:
        self.assertFalse(config_equal({"a": "1"}, {"a": "1", "b": "2"}, "labels"))

    def test_unordered_lists_compare_as_sets(self) -> None:
        left = [{"name": "http", "port": 80}, {"name": "https", "port": 443}]
        right = list(reversed(left))
        self.assertTrue(config_equal(left, right, "ports"))

    def test_command_arguments_are_order_sensitive(self) -> None:
        self.assertFalse(config_equal(["--a", "--b"], ["--b", "--a"], "args"))
        self.assertTrue(config_equal(["--a", "--b"], ["--a", "--b"], "args"))

    def test_scalar_difference_is_detected(self) -> None:
        self.assertFalse(config_equal({"replicas": 2}, {"replicas": 5}))


class ResourcesEqualTests(unittest.TestCase):
    def test_server_bookkeeping_is_ignored(self) -> None:
        live = _service(
            8080,
            namespace="ns1",
            resourceVersion="42",
            uid="abc",
            creationTimestamp="2024-01-01T00:00:00Z",
            managedFields=[{"manager": "kubectl"}],
            annotations={"kubectl.kubernetes.io/last-applied-configuration": "{}"},
        )
        live["status"] = {"loadBalancer": {}}
        live["spec"]["clusterIP"] = "10.0.0.12"
        self.assertTrue(resources_equal(_service(8080), live))

    def test_changed_port_is_a_difference(self) -> None:
        self.assertFalse(resources_equal(_service(9090), _service(8080)))

    def test_changed_labels_are_a_difference(self) -> None:
        self.assertFalse(resources_equal(_service(8080, labels={"tier": "web"}), _service(8080)))

    def test_missing_existing_is_never_equal(self) -> None:
        self.assertFalse(resources_equal(_service(8080), None))

    def test_different_kinds_are_never_equal(self) -> None:
        other = _service(8080)
        other["kind"] = "Endpoints"
        self.assertFalse(resources_equal(_service(8080), other))

    def test_secret_data_is_compared_exactly(self) -> None:
        desired = {"kind": "Secret", "metadata": {"name": "s"}, "data": {"user": "YQ=="}}
        live = {"kind": "Secret", "metadata": {"name": "s"}, "data": {"user": "YQ==", "extra": "Yg=="}, "type": "Opaque"}
        self.assertFalse(resources_equal(desired, live))
        live["data"].pop("extra")
        self.assertTrue(resources_equal(desired, live))

    def test_secret_string_data_matches_encoded_live_data(self) -> None:
        desired = {"kind": "Secret", "metadata": {"name": "s"}, "stringData": {"password": "hunter2"}}
        live = {"kind": "Secret", "metadata": {"name": "s"}, "data": {"password": "aHVudGVyMg=="}, "type": "Opaque"}
        self.assertTrue(resources_equal(desired, live))
        desired["stringData"]["password"] = "hunter3"
        self.assertFalse(resources_equal(desired, live))

    def test_container_quantities_compare_by_amount(self) -> None:
        def pod(limits: dict) -> dict:
            container = {"name": "app", "image": "app:1", "resources": {"limits": limits, "requests": {"memory": "1Gi"}}}
            return {"kind": "Pod", "metadata": {"name": "p"}, "spec": {"containers": [container]}}

        self.assertTrue(resources_equal(pod({"cpu": 0.5, "memory": 1073741824}), pod({"cpu": "500m", "memory": "1Gi"})))
        self.assertFalse(resources_equal(pod({"cpu": 1}), pod({"cpu": "500m"})))

    def test_quota_hard_limits_compare_by_amount(self) -> None:
        desired = {"kind": "ResourceQuota", "metadata": {"name": "q"}, "spec": {"hard": {"requests.cpu": "2", "pods": 10}}}
        live = {"kind": "ResourceQuota", "metadata": {"name": "q"}, "spec": {"hard": {"requests.cpu": "2000m", "pods": "10"}}}
        self.assertTrue(resources_equal(desired, live))


class QuantityEqualTests(unittest.TestCase):
    def test_equivalent_notations(self) -> None:
        self.assertTrue(quantity_equal("0.1", "100m"))
        self.assertTrue(quantity_equal(0.1, "100m"))
        self.assertTrue(quantity_equal("1Ki", 1024))
        self.assertFalse(quantity_equal("1k", "1Ki"))

    def test_non_quantities_fall_back_to_equality(self) -> None:
        self.assertTrue(quantity_equal("abc", "abc"))
        self.assertFalse(quantity_equal("abc", "abd"))


class SectionEqualTests(unittest.TestCase):
    def test_metadata_equal_drops_server_annotations(self) -> None:
        self.assertTrue(
            metadata_equal(
                {"name": "a", "annotations": {"team": "x"}},
                {"name": "a", "annotations": {"team": "x", "deployment.kubernetes.io/revision": "3"}},
            )
        )

    def test_section_equal_only_looks_at_named_section(self) -> None:
        left = {"data": {"k": "v"}, "stringData": {"a": "b"}}
        right = {"data": {"k": "v"}, "stringData": {"a": "c"}}
        self.assertTrue(section_equal(left, right, "data"))
        self.assertFalse(section_equal(left, right, "stringData"))


if __name__ == "__main__":
    unittest.main()
