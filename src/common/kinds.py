"""Closed table of the resource kinds the apply engine knows how to handle."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class KindInfo:
    name: str
    api_version: str
    namespaced: bool = True
    openshift_only: bool = False
    weight: int = 100


def _kinds(*entries: KindInfo) -> Dict[str, KindInfo]:
    return {entry.name: entry for entry in entries}


KINDS: Dict[str, KindInfo] = _kinds(
    # Namespaces and cluster-level guard rails first
    KindInfo("SecurityContextConstraints", "security.openshift.io/v1", namespaced=False, openshift_only=True, weight=0),
    KindInfo("Namespace", "v1", namespaced=False, weight=1),
    KindInfo("Project", "project.openshift.io/v1", namespaced=False, openshift_only=True, weight=1),
    KindInfo("LimitRange", "v1", weight=2),
    KindInfo("ResourceQuota", "v1", weight=3),
    KindInfo("Secret", "v1", weight=12),
    KindInfo("ServiceAccount", "v1", weight=13),
    KindInfo("OAuthClient", "oauth.openshift.io/v1", namespaced=False, openshift_only=True, weight=14),
    KindInfo("Service", "v1", weight=15),
    KindInfo("PersistentVolume", "v1", namespaced=False, weight=20),
    KindInfo("PersistentVolumeClaim", "v1", weight=21),
    KindInfo("ImageStream", "image.openshift.io/v1", openshift_only=True, weight=30),
    # Access control
    KindInfo("ClusterRole", "rbac.authorization.k8s.io/v1", namespaced=False, weight=35),
    KindInfo("ClusterRoleBinding", "rbac.authorization.k8s.io/v1", namespaced=False, weight=36),
    KindInfo("Role", "rbac.authorization.k8s.io/v1", weight=37),
    KindInfo("RoleBinding", "rbac.authorization.k8s.io/v1", weight=38),
    # Extension points
    KindInfo("CustomResourceDefinition", "apiextensions.k8s.io/v1", namespaced=False, weight=40),
    KindInfo("IngressClass", "networking.k8s.io/v1", namespaced=False, weight=41),
    KindInfo("StorageClass", "storage.k8s.io/v1", namespaced=False, weight=42),
    # Workloads and the rest
    KindInfo("ConfigMap", "v1"),
    KindInfo("Pod", "v1"),
    KindInfo("ReplicationController", "v1"),
    KindInfo("Deployment", "apps/v1"),
    KindInfo("ReplicaSet", "apps/v1"),
    KindInfo("StatefulSet", "apps/v1"),
    KindInfo("DaemonSet", "apps/v1"),
    KindInfo("Job", "batch/v1"),
    KindInfo("CronJob", "batch/v1"),
    KindInfo("HorizontalPodAutoscaler", "autoscaling/v2"),
    KindInfo("PodDisruptionBudget", "policy/v1"),
    KindInfo("Ingress", "networking.k8s.io/v1"),
    KindInfo("NetworkPolicy", "networking.k8s.io/v1"),
    KindInfo("Route", "route.openshift.io/v1", openshift_only=True),
    KindInfo("BuildConfig", "build.openshift.io/v1", openshift_only=True),
    KindInfo("DeploymentConfig", "apps.openshift.io/v1", openshift_only=True),
    KindInfo("Template", "template.openshift.io/v1", openshift_only=True),
)

NAMESPACE_KINDS = frozenset({"Namespace", "Project"})

# API groups served by the platform itself; anything else with a dotted
# group is assumed to come from a CustomResourceDefinition.
BUILTIN_API_GROUPS = frozenset(
    {
        "",
        "apps",
        "batch",
        "autoscaling",
        "policy",
        "extensions",
        "networking.k8s.io",
        "rbac.authorization.k8s.io",
        "storage.k8s.io",
        "apiextensions.k8s.io",
        "admissionregistration.k8s.io",
        "coordination.k8s.io",
        "discovery.k8s.io",
        "scheduling.k8s.io",
        "node.k8s.io",
        "certificates.k8s.io",
        "project.openshift.io",
        "oauth.openshift.io",
        "route.openshift.io",
        "image.openshift.io",
        "build.openshift.io",
        "apps.openshift.io",
        "template.openshift.io",
        "security.openshift.io",
        "user.openshift.io",
        "authorization.openshift.io",
    }
)


def kind_info(kind: Optional[str]) -> Optional[KindInfo]:
    if not kind:
        return None
    return KINDS.get(kind)


def api_group(api_version: Optional[str]) -> str:
    """Return the group part of an apiVersion ("apps/v1" -> "apps", "v1" -> "")."""

    if not api_version or "/" not in api_version:
        return ""
    return api_version.split("/", 1)[0]


def is_custom_kind(kind: Optional[str], api_version: Optional[str]) -> bool:
    if not kind or kind in KINDS:
        return False
    group = api_group(api_version)
    return "." in group and group not in BUILTIN_API_GROUPS


def is_namespaced(kind: str) -> bool:
    info = kind_info(kind)
    if info is not None:
        return info.namespaced
    # Custom resources are treated as namespaced.
    return True


def default_api_version(kind: str) -> Optional[str]:
    info = kind_info(kind)
    return info.api_version if info else None


def sort_weight(kind: Optional[str]) -> int:
    info = kind_info(kind)
    return info.weight if info else 100


__all__ = [
    "BUILTIN_API_GROUPS",
    "KINDS",
    "KindInfo",
    "NAMESPACE_KINDS",
    "api_group",
    "default_api_version",
    "is_custom_kind",
    "is_namespaced",
    "kind_info",
    "sort_weight",
]
