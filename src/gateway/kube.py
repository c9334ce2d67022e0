from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import kubernetes
import urllib3
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import (
    ConflictError as KubeConflictError,
    DynamicApiError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)

from src.common.errors import ConfigurationError
from src.common.kinds import default_api_version, kind_info
from .base import (
    ClusterGateway,
    ConflictError,
    GatewayError,
    Manifest,
    Mutator,
    ResourceMissingError,
    format_selector,
)
from .jsonpatch_edit import build_edit_patch

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE_FILE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


class KubeGateway(ClusterGateway):
    """ClusterGateway backed by the ``kubernetes`` dynamic client."""

    def __init__(
        self,
        client: DynamicClient,
        *,
        current_namespace: Optional[str] = None,
        field_manager: str = "k8s-apply",
    ) -> None:
        self._client = client
        self._current_namespace = current_namespace
        self.field_manager = field_manager
        self._openshift: Optional[bool] = None

    @classmethod
    def from_config(cls, context: Optional[str] = None, *, field_manager: str = "k8s-apply") -> "KubeGateway":
        """In-cluster configuration when available, otherwise the kubeconfig (optionally a named context)."""

        if context is None:
            kube_config = kubernetes.client.Configuration()
            try:
                kubernetes.config.load_incluster_config(client_configuration=kube_config)
            except kubernetes.config.ConfigException:
                logger.debug("In-cluster config unavailable; using kubeconfig")
            else:
                logger.debug("Running with in-cluster config")
                return cls._connect(kubernetes.client.ApiClient(kube_config), _incluster_namespace(), field_manager)
        try:
            api_client = kubernetes.config.new_client_from_config(context=context)
        except kubernetes.config.ConfigException as exc:
            raise ConfigurationError(f"Unable to load cluster configuration: {exc}") from exc
        return cls._connect(api_client, _kubeconfig_namespace(context), field_manager)

    @classmethod
    def _connect(cls, api_client, current_namespace: Optional[str], field_manager: str) -> "KubeGateway":
        # DynamicClient runs API discovery on construction.
        with cls._translated("connect to the cluster"):
            client = DynamicClient(api_client)
        return cls(client, current_namespace=current_namespace, field_manager=field_manager)

    @property
    def current_namespace(self) -> Optional[str]:
        return self._current_namespace

    def is_openshift(self) -> bool:
        if self._openshift is None:
            try:
                self._client.resources.get(api_version="project.openshift.io/v1", kind="Project")
                self._openshift = True
            except (ResourceNotFoundError, ResourceNotUniqueError):
                self._openshift = False
            except (ApiException, urllib3.exceptions.HTTPError) as exc:
                raise GatewayError(f"API discovery failed: {exc}") from exc
        return self._openshift

    def is_namespaced(self, kind: str, api_version: Optional[str] = None) -> bool:
        info = kind_info(kind)
        if info is not None:
            return info.namespaced
        with self._translated(f"discover {kind}"):
            try:
                return bool(self._resource(kind, api_version).namespaced)
            except (ResourceNotFoundError, ResourceNotUniqueError):
                logger.debug("No discovery information for %s %s; treating it as namespaced", api_version, kind)
                return True

    # CRUD #####################################################################

    def get(self, kind: str, namespace: Optional[str], name: str, api_version: Optional[str] = None) -> Optional[Manifest]:
        with self._translated(f"get {kind} {name}"):
            resource = self._resource(kind, api_version)
            try:
                return resource.get(name=name, namespace=self._scoped(resource, namespace)).to_dict()
            except NotFoundError:
                return None

    def create(self, namespace: Optional[str], manifest: Manifest) -> Manifest:
        kind = manifest.get("kind", "")
        with self._translated(f"create {kind} {_name_of(manifest)}"):
            resource = self._resource(kind, manifest.get("apiVersion"))
            return resource.create(body=manifest, namespace=self._scoped(resource, namespace)).to_dict()

    def replace(self, namespace: Optional[str], name: str, manifest: Manifest) -> Manifest:
        kind = manifest.get("kind", "")
        with self._translated(f"replace {kind} {name}"):
            resource = self._resource(kind, manifest.get("apiVersion"))
            return resource.replace(body=manifest, name=name, namespace=self._scoped(resource, namespace)).to_dict()

    def edit(
        self,
        kind: str,
        namespace: Optional[str],
        name: str,
        mutator: Mutator,
        api_version: Optional[str] = None,
    ) -> Manifest:
        with self._translated(f"edit {kind} {name}"):
            resource = self._resource(kind, api_version)
            scoped = self._scoped(resource, namespace)
            try:
                live = resource.get(name=name, namespace=scoped).to_dict()
            except NotFoundError as exc:
                raise ResourceMissingError(f"{kind} {name} disappeared before it could be edited") from exc
            ops = build_edit_patch(live, mutator(copy.deepcopy(live)))
            if not ops:
                return live
            logger.debug("Sending %d patch operation(s) to %s %s", len(ops), kind, name)
            return resource.patch(
                body=ops,
                name=name,
                namespace=scoped,
                content_type=JSON_PATCH_CONTENT_TYPE,
            ).to_dict()

    def rolling_replace(self, namespace: Optional[str], name: str, manifest: Manifest) -> Manifest:
        kind = manifest.get("kind", "")
        body = copy.deepcopy(manifest)
        body.setdefault("metadata", {}).pop("managedFields", None)
        with self._translated(f"rolling replace {kind} {name}"):
            resource = self._resource(kind, manifest.get("apiVersion"))
            return self._client.server_side_apply(
                resource,
                body=body,
                name=name,
                namespace=self._scoped(resource, namespace),
                field_manager=self.field_manager,
                force_conflicts=True,
            ).to_dict()

    def delete(self, kind: str, namespace: Optional[str], name: str, api_version: Optional[str] = None) -> bool:
        with self._translated(f"delete {kind} {name}"):
            resource = self._resource(kind, api_version)
            try:
                resource.delete(name=name, namespace=self._scoped(resource, namespace))
            except NotFoundError:
                return False
            return True

    def delete_all(
        self,
        kind: str,
        namespace: Optional[str],
        label_selector: Dict[str, str],
        api_version: Optional[str] = None,
    ) -> None:
        selector = format_selector(label_selector)
        if not selector:
            raise ValueError("refusing to delete a whole collection without a label selector")
        with self._translated(f"delete {kind} matching {selector}"):
            resource = self._resource(kind, api_version)
            resource.delete(namespace=self._scoped(resource, namespace), label_selector=selector)

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[Dict[str, str]] = None,
        api_version: Optional[str] = None,
    ) -> List[Manifest]:
        with self._translated(f"list {kind}"):
            resource = self._resource(kind, api_version)
            result = resource.get(
                namespace=self._scoped(resource, namespace),
                label_selector=format_selector(label_selector),
            ).to_dict()
        return list(result.get("items") or [])

    def watch(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[Dict[str, str]] = None,
        api_version: Optional[str] = None,
        timeout_seconds: int = 30,
    ) -> Iterator[Dict[str, Any]]:
        with self._translated(f"watch {kind}"):
            resource = self._resource(kind, api_version)
            for event in resource.watch(
                namespace=self._scoped(resource, namespace),
                label_selector=format_selector(label_selector),
                timeout=timeout_seconds,
            ):
                yield {"type": event["type"], "object": event["object"].to_dict()}

    # Namespaces / projects ####################################################

    def namespace_exists(self, name: str) -> bool:
        if self.is_openshift():
            # Basic users get 403 instead of 404 for a project they cannot see, so list instead.
            projects = self.list("Project")
            return any((project.get("metadata") or {}).get("name") == name for project in projects)
        return self.get("Namespace", None, name) is not None

    def create_project_request(self, manifest: Manifest) -> Manifest:
        with self._translated(f"create project {_name_of(manifest)}"):
            resource = self._client.resources.get(api_version="project.openshift.io/v1", kind="ProjectRequest")
            return resource.create(body=manifest).to_dict()

    # Helpers ##################################################################

    def _resource(self, kind: str, api_version: Optional[str]):
        return self._client.resources.get(api_version=api_version or default_api_version(kind), kind=kind)

    @staticmethod
    def _scoped(resource, namespace: Optional[str]) -> Optional[str]:
        return namespace if resource.namespaced else None

    @staticmethod
    @contextmanager
    def _translated(description: str) -> Iterator[None]:
        try:
            yield
        except GatewayError:
            raise
        except KubeConflictError as exc:
            raise ConflictError(f"{description}: {exc.summary()}") from exc
        except DynamicApiError as exc:
            raise GatewayError(f"{description}: {exc.summary()}", status=exc.status) from exc
        except ApiException as exc:
            raise GatewayError(f"{description}: {exc.reason}", status=exc.status) from exc
        except (ResourceNotFoundError, ResourceNotUniqueError) as exc:
            raise GatewayError(f"{description}: {exc}") from exc
        except urllib3.exceptions.HTTPError as exc:
            raise GatewayError(f"{description}: {exc}") from exc


def _name_of(manifest: Manifest) -> str:
    return str((manifest.get("metadata") or {}).get("name") or "")


def _incluster_namespace() -> Optional[str]:
    try:
        value = SERVICE_ACCOUNT_NAMESPACE_FILE.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return value or None


def _kubeconfig_namespace(context: Optional[str]) -> Optional[str]:
    try:
        contexts, active = kubernetes.config.list_kube_config_contexts()
    except kubernetes.config.ConfigException:
        return None
    selected = active
    if context is not None:
        selected = next((entry for entry in contexts or [] if entry.get("name") == context), None)
    if not isinstance(selected, dict):
        return None
    return (selected.get("context") or {}).get("namespace")


__all__ = ["KubeGateway"]
