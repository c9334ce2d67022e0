from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from src.common.errors import ConfigurationError
from src.compare.equivalence import (
    EXACT_MAP_FIELDS,
    IGNORED_TOP_LEVEL,
    SERVER_MANAGED_ANNOTATION_PREFIXES,
    SERVER_MANAGED_METADATA,
    fold_string_data,
    metadata_equal,
    resources_equal,
    section_equal,
)
from src.gateway.base import ClusterGateway, Manifest
from src.model.descriptor import ResourceDescriptor

logger = logging.getLogger(__name__)

SectionPath = Tuple[str, ...]


def _lookup(manifest: Mapping[str, Any], path: SectionPath) -> Optional[Mapping[str, Any]]:
    """Return the mapping that holds the last element of ``path``."""

    current: Any = manifest
    for key in path[:-1]:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current if isinstance(current, Mapping) else None


def _assign(manifest: Dict[str, Any], path: SectionPath, value: Any) -> None:
    current = manifest
    for key in path[:-1]:
        child = current.get(key)
        if not isinstance(child, dict):
            child = {}
            current[key] = child
        current = child
    if value is None:
        current.pop(path[-1], None)
    else:
        current[path[-1]] = _overlay(current.get(path[-1]), value, path[-1])


def _overlay(live: Any, desired: Any, field: str) -> Any:
    """Desired values on top of live ones; fields the desired side leaves unset keep their server value."""

    if field in EXACT_MAP_FIELDS or not (isinstance(live, dict) and isinstance(desired, dict)):
        return copy.deepcopy(desired)
    merged = dict(live)
    for key, value in desired.items():
        merged[key] = _overlay(live.get(key), value, key)
    return merged


def merge_metadata(live: Mapping[str, Any], desired: Mapping[str, Any]) -> Dict[str, Any]:
    """Desired user metadata on top of the live object's server-managed fields."""

    merged = {key: copy.deepcopy(value) for key, value in live.items() if key in SERVER_MANAGED_METADATA}
    for key, value in desired.items():
        if key in SERVER_MANAGED_METADATA and key != "resourceVersion":
            continue
        merged[key] = copy.deepcopy(value)
    kept_annotations = {
        key: value
        for key, value in (live.get("annotations") or {}).items()
        if any(key.startswith(prefix) for prefix in SERVER_MANAGED_ANNOTATION_PREFIXES)
    }
    if kept_annotations:
        merged["annotations"] = {**kept_annotations, **(merged.get("annotations") or {})}
    if "namespace" in live and "namespace" not in merged:
        merged["namespace"] = live["namespace"]
    return merged


class EntityPatcher:
    """Overwrite only the sections of a live object that differ from the desired one.

    ``paths`` lists the sections owned by the desired manifest, each as a key path
    (``("spec",)``, ``("spec", "template")``). Metadata is always considered.
    Differences outside those sections are never sent; ``unowned_changes`` names them.
    """

    def __init__(self, *paths: SectionPath) -> None:
        self.paths: Tuple[SectionPath, ...] = paths or (("spec",),)

    def section_paths(self, new: ResourceDescriptor, old: ResourceDescriptor) -> Tuple[SectionPath, ...]:
        return self.paths

    def changed_paths(self, new: ResourceDescriptor, old: ResourceDescriptor) -> Tuple[SectionPath, ...]:
        changed = []
        for path in self.section_paths(new, old):
            if not section_equal(_lookup(new.body, path), _lookup(old.body, path), path[-1]):
                changed.append(path)
        return tuple(changed)

    def unowned_changes(self, new: ResourceDescriptor, old: ResourceDescriptor) -> List[str]:
        """Dotted names of the differing fields no section path covers."""

        new, old = _folded(new), _folded(old)
        return sorted(_differences(new.body, old.body, (), self.section_paths(new, old)))

    def patch(
        self,
        gateway: ClusterGateway,
        namespace: Optional[str],
        new: ResourceDescriptor,
        old: ResourceDescriptor,
    ) -> Manifest:
        new, old = _folded(new), _folded(old)
        if resources_equal(new.body, old.body):
            return old.body

        metadata_changed = not metadata_equal(new.metadata, old.metadata)
        changed = self.changed_paths(new, old)
        if not metadata_changed and not changed:
            logger.debug("Nothing to patch on %s", new.describe(namespace))
            return old.body
        carried = new.resource_version
        logger.debug(
            "Patching %s: metadata %s, sections %s",
            new.describe(namespace),
            "changed" if metadata_changed else "unchanged",
            ", ".join("/".join(path) for path in changed) or "none",
        )

        def mutate(live: Manifest) -> Manifest:
            live_meta = live.setdefault("metadata", {})
            if metadata_changed:
                live["metadata"] = live_meta = merge_metadata(live_meta, new.metadata)
            if carried is not None:
                live_meta["resourceVersion"] = carried
            for path in changed:
                holder = _lookup(new.body, path) or {}
                _assign(live, path, holder.get(path[-1]))
            return live

        return gateway.edit(new.kind, namespace, new.name, mutate, api_version=new.api_version)


class TopLevelPatcher(EntityPatcher):
    """Owns every top-level field, for kinds without a ``spec`` (SCCs, storage classes)."""

    def section_paths(self, new: ResourceDescriptor, old: ResourceDescriptor) -> Tuple[SectionPath, ...]:
        keys = (set(new.body) | set(old.body)) - IGNORED_TOP_LEVEL
        return tuple((key,) for key in sorted(keys))


def _folded(descriptor: ResourceDescriptor) -> ResourceDescriptor:
    body = fold_string_data(descriptor.body)
    return descriptor if body is descriptor.body else ResourceDescriptor(dict(body))


def _differences(
    new: Mapping[str, Any],
    old: Mapping[str, Any],
    prefix: SectionPath,
    owned: Tuple[SectionPath, ...],
) -> List[str]:
    found: List[str] = []
    for key in set(new) | set(old):
        if not prefix and key in IGNORED_TOP_LEVEL:
            continue
        path = prefix + (key,)
        if path in owned:
            continue
        left, right = new.get(key), old.get(key)
        covers_child = any(entry[: len(path)] == path for entry in owned)
        if covers_child and isinstance(left, Mapping) and isinstance(right, Mapping):
            found.extend(_differences(left, right, path, owned))
        elif not section_equal(new, old, key):
            found.append(".".join(path))
    return found


_SPEC = ("spec",)

DEFAULT_PATCHERS: Dict[str, EntityPatcher] = {
    # Workloads
    "Pod": EntityPatcher(_SPEC),
    "ReplicationController": EntityPatcher(_SPEC),
    "Deployment": EntityPatcher(_SPEC),
    "ReplicaSet": EntityPatcher(_SPEC),
    "StatefulSet": EntityPatcher(_SPEC),
    "DaemonSet": EntityPatcher(_SPEC),
    "CronJob": EntityPatcher(_SPEC),
    "Job": EntityPatcher(("spec", "selector"), ("spec", "template")),
    "HorizontalPodAutoscaler": EntityPatcher(_SPEC),
    "PodDisruptionBudget": EntityPatcher(_SPEC),
    # Networking and storage
    "Service": EntityPatcher(_SPEC),
    "Ingress": EntityPatcher(_SPEC),
    "IngressClass": EntityPatcher(_SPEC),
    "NetworkPolicy": EntityPatcher(_SPEC),
    "PersistentVolume": EntityPatcher(_SPEC),
    "PersistentVolumeClaim": EntityPatcher(_SPEC),
    "StorageClass": TopLevelPatcher(),
    # Configuration and guard rails
    "ConfigMap": EntityPatcher(("data",), ("binaryData",)),
    "Secret": EntityPatcher(("data",), ("stringData",), ("type",)),
    "ServiceAccount": EntityPatcher(("secrets",), ("imagePullSecrets",), ("automountServiceAccountToken",)),
    "LimitRange": EntityPatcher(_SPEC),
    "ResourceQuota": EntityPatcher(_SPEC),
    "CustomResourceDefinition": EntityPatcher(_SPEC),
    # Access control
    "Role": EntityPatcher(("rules",)),
    "ClusterRole": EntityPatcher(("rules",), ("aggregationRule",)),
    "RoleBinding": EntityPatcher(("subjects",), ("roleRef",)),
    "ClusterRoleBinding": EntityPatcher(("subjects",), ("roleRef",)),
    # OpenShift
    "SecurityContextConstraints": TopLevelPatcher(),
    "BuildConfig": EntityPatcher(_SPEC),
    "ImageStream": EntityPatcher(_SPEC),
    "Route": EntityPatcher(_SPEC),
    "DeploymentConfig": EntityPatcher(_SPEC),
}


class PatchDispatcher:
    """Kind-keyed registry of patch strategies."""

    def __init__(self, patchers: Optional[Mapping[str, EntityPatcher]] = None) -> None:
        self._patchers: Dict[str, EntityPatcher] = dict(DEFAULT_PATCHERS if patchers is None else patchers)

    def register(self, kind: str, patcher: EntityPatcher) -> None:
        self._patchers[kind] = patcher

    def supports(self, kind: str) -> bool:
        return kind in self._patchers

    def patch(
        self,
        gateway: ClusterGateway,
        namespace: Optional[str],
        new: ResourceDescriptor,
        old: ResourceDescriptor,
    ) -> Manifest:
        patcher = self._for(new.kind)
        new.resource_version = old.resource_version
        return patcher.patch(gateway, namespace, new, old)

    def unowned_changes(self, new: ResourceDescriptor, old: ResourceDescriptor) -> List[str]:
        return self._for(new.kind).unowned_changes(new, old)

    def _for(self, kind: str) -> EntityPatcher:
        patcher = self._patchers.get(kind)
        if patcher is None:
            raise ConfigurationError(f"No patcher registered for kind {kind!r}")
        return patcher


__all__ = ["DEFAULT_PATCHERS", "EntityPatcher", "PatchDispatcher", "TopLevelPatcher", "merge_metadata"]
