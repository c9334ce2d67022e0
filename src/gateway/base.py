"""Boundary to the live cluster API.

Every call is blocking. Retries and timeouts belong to the concrete client
configuration; callers attempt each mutation exactly once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, List, Optional

from src.common import kinds

Manifest = Dict[str, Any]
Mutator = Callable[[Manifest], Manifest]


class GatewayError(Exception):
    """Raised for any transport or API failure other than a plain "not found" lookup."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ConflictError(GatewayError):
    """HTTP 409: the object already exists or was modified concurrently."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status=409)


class ResourceMissingError(GatewayError):
    """The object disappeared while a read-modify-write was in progress."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status=404)


class ClusterGateway(ABC):
    """CRUD and watch primitives against one cluster.

    ``get`` returns ``None`` and ``delete`` returns ``False`` when the object does
    not exist; every other failure raises :class:`GatewayError`. ``namespace`` is
    ``None`` for cluster-scoped kinds. ``api_version`` may be omitted for kinds in
    the kind table.
    """

    @property
    @abstractmethod
    def current_namespace(self) -> Optional[str]:
        """Namespace the client is scoped to (kubeconfig context or service account)."""

    @abstractmethod
    def is_openshift(self) -> bool:
        """Whether the cluster serves the OpenShift project/route/build APIs."""

    def is_namespaced(self, kind: str, api_version: Optional[str] = None) -> bool:
        """Scope of ``kind``. The kind table answers here; adapters with API discovery also know custom kinds."""

        return kinds.is_namespaced(kind)

    @abstractmethod
    def get(self, kind: str, namespace: Optional[str], name: str, api_version: Optional[str] = None) -> Optional[Manifest]:
        ...

    @abstractmethod
    def create(self, namespace: Optional[str], manifest: Manifest) -> Manifest:
        ...

    @abstractmethod
    def replace(self, namespace: Optional[str], name: str, manifest: Manifest) -> Manifest:
        ...

    @abstractmethod
    def edit(
        self,
        kind: str,
        namespace: Optional[str],
        name: str,
        mutator: Mutator,
        api_version: Optional[str] = None,
    ) -> Manifest:
        """Atomically read the live object, apply ``mutator`` to a copy and write it back."""

    @abstractmethod
    def rolling_replace(self, namespace: Optional[str], name: str, manifest: Manifest) -> Manifest:
        """Replace a replicated workload in one server-side step."""

    @abstractmethod
    def delete(self, kind: str, namespace: Optional[str], name: str, api_version: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    def delete_all(
        self,
        kind: str,
        namespace: Optional[str],
        label_selector: Dict[str, str],
        api_version: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[Dict[str, str]] = None,
        api_version: Optional[str] = None,
    ) -> List[Manifest]:
        ...

    @abstractmethod
    def watch(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[Dict[str, str]] = None,
        api_version: Optional[str] = None,
        timeout_seconds: int = 30,
    ) -> Iterator[Dict[str, Any]]:
        """Yield ``{"type": ..., "object": manifest}`` events until the timeout expires."""

    @abstractmethod
    def namespace_exists(self, name: str) -> bool:
        ...

    @abstractmethod
    def create_project_request(self, manifest: Manifest) -> Manifest:
        ...


def format_selector(selector: Optional[Dict[str, str]]) -> Optional[str]:
    if not selector:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(selector.items()))


__all__ = [
    "ClusterGateway",
    "ConflictError",
    "GatewayError",
    "Manifest",
    "Mutator",
    "ResourceMissingError",
    "format_selector",
]
