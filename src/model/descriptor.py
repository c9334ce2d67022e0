from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from src.common.errors import ConfigurationError
from src.common.kinds import NAMESPACE_KINDS, default_api_version, is_namespaced, sort_weight

logger = logging.getLogger(__name__)


class Action(str, Enum):
    NOOP = "NOOP"
    CREATED = "CREATED"
    PATCHED = "PATCHED"
    RECREATED = "RECREATED"
    SKIPPED_WARN = "SKIPPED_WARN"
    FAILED = "FAILED"


@dataclass
class ResourceDescriptor:
    """One desired (or fetched) resource, backed by its plain manifest mapping."""

    body: Dict[str, Any]

    @classmethod
    def from_dict(cls, manifest: Dict[str, Any]) -> "ResourceDescriptor":
        if not isinstance(manifest, dict):
            raise ConfigurationError(f"resource manifest must be a mapping, got {type(manifest).__name__}")
        return cls(copy.deepcopy(manifest))

    @property
    def kind(self) -> str:
        return str(self.body.get("kind") or "")

    @property
    def api_version(self) -> Optional[str]:
        return self.body.get("apiVersion") or default_api_version(self.kind)

    @property
    def metadata(self) -> Dict[str, Any]:
        metadata = self.body.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
            self.body["metadata"] = metadata
        return metadata

    @property
    def name(self) -> str:
        return str(self.metadata.get("name") or "")

    @property
    def namespace(self) -> Optional[str]:
        value = self.metadata.get("namespace")
        return value if isinstance(value, str) and value.strip() else None

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.get("labels") or {}

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @resource_version.setter
    def resource_version(self, value: Optional[str]) -> None:
        if value is None:
            self.metadata.pop("resourceVersion", None)
        else:
            self.metadata["resourceVersion"] = value

    @property
    def spec(self) -> Dict[str, Any]:
        return self.body.get("spec") or {}

    @property
    def namespaced(self) -> bool:
        return is_namespaced(self.kind)

    def identity(self) -> Tuple[str, Optional[str], str]:
        return (self.kind, self.namespace, self.name)

    def describe(self, namespace: Optional[str] = None) -> str:
        ns = namespace or self.namespace
        if ns and self.namespaced:
            return f"{self.kind} {ns}/{self.name}"
        return f"{self.kind} {self.name}"

    def copy(self) -> "ResourceDescriptor":
        return ResourceDescriptor(copy.deepcopy(self.body))

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.body)


@dataclass
class ApplyOutcome:
    kind: str
    name: str
    action: Action
    detail: str = ""
    namespace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind,
            "name": self.name,
            "action": self.action.value,
        }
        if self.namespace is not None:
            data["namespace"] = self.namespace
        if self.detail:
            data["detail"] = self.detail
        return data


@dataclass
class SessionContext:
    """State shared across the resources of one deployment invocation.

    Not safe for concurrent use: one invocation owns one context.
    """

    created_namespaces: Set[str] = field(default_factory=set)
    ingress_checked: bool = False

    def was_created(self, name: str) -> bool:
        return name in self.created_namespaces

    def mark_created(self, name: str) -> None:
        self.created_namespaces.add(name)


def _is_list_wrapper(item: Dict[str, Any]) -> bool:
    kind = item.get("kind")
    return isinstance(kind, str) and kind.endswith("List") and isinstance(item.get("items"), list)


def flatten_desired(desired: Any) -> List[ResourceDescriptor]:
    """Flatten a single manifest, a list, a ``*List`` wrapper or any nesting of those.

    A container that (directly or indirectly) contains itself is skipped with a warning.
    """

    flattened: List[ResourceDescriptor] = []
    active: Set[int] = set()

    def visit(item: Any) -> None:
        if item is None:
            return
        if isinstance(item, ResourceDescriptor):
            flattened.append(item)
            return
        if isinstance(item, dict) and not _is_list_wrapper(item):
            flattened.append(ResourceDescriptor.from_dict(item))
            return
        if isinstance(item, dict):
            children: Iterable[Any] = item["items"]
        elif isinstance(item, (list, tuple)):
            children = item
        else:
            raise ConfigurationError(f"Unsupported desired-state entry of type {type(item).__name__}")

        marker = id(item)
        if marker in active:
            logger.warning("Found recursive nested object of type %s; skipping it", type(item).__name__)
            return
        active.add(marker)
        try:
            for child in children:
                visit(child)
        finally:
            active.discard(marker)

    visit(desired)
    return flattened


def order_for_apply(descriptors: Iterable[ResourceDescriptor]) -> List[ResourceDescriptor]:
    """Stable sort by kind weight with Namespace/Project descriptors always first."""

    indexed = list(enumerate(descriptors))
    indexed.sort(
        key=lambda pair: (
            0 if pair[1].kind in NAMESPACE_KINDS else 1,
            sort_weight(pair[1].kind),
            pair[0],
        )
    )
    return [descriptor for _, descriptor in indexed]


__all__ = [
    "Action",
    "ApplyOutcome",
    "ResourceDescriptor",
    "SessionContext",
    "flatten_desired",
    "order_for_apply",
]
