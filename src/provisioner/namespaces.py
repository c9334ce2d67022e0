from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from src.gateway.base import ClusterGateway, Manifest
from src.model.descriptor import ResourceDescriptor, SessionContext

logger = logging.getLogger(__name__)

PROJECT_REQUEST_API_VERSION = "project.openshift.io/v1"
TRACEABILITY_LABEL = "project"


class NamespaceProvisioner:
    """Make sure a namespace (or OpenShift project) exists before its contents are applied.

    On OpenShift the namespace is requested through a ``ProjectRequest``; elsewhere a
    plain ``Namespace`` is created. Unless explicit labels are given, the new namespace
    is labelled ``project=<namespace the client is scoped to>`` so it can be traced
    back to where it was created from.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        *,
        on_created: Optional[Callable[[Manifest], None]] = None,
    ) -> None:
        self.gateway = gateway
        self.on_created = on_created

    def ensure(
        self,
        name: Optional[str],
        session: SessionContext,
        labels: Optional[Dict[str, str]] = None,
        *,
        display_name: Optional[str] = None,
    ) -> bool:
        """Create ``name`` when missing. Returns True only if a creation call was issued."""

        if not name or not name.strip():
            return False
        if session.was_created(name):
            return False
        if self.gateway.namespace_exists(name):
            return False

        effective_labels = dict(labels) if labels else self._traceability_labels()
        if self.gateway.is_openshift():
            logger.info("Creating project %s", name)
            answer = self.gateway.create_project_request(
                self._project_request(name, effective_labels, display_name)
            )
        else:
            logger.info("Creating namespace %s", name)
            answer = self.gateway.create(None, self._namespace(name, effective_labels))
        session.mark_created(name)
        if self.on_created is not None:
            self.on_created(answer)
        return True

    def ensure_descriptor(self, descriptor: ResourceDescriptor, session: SessionContext) -> bool:
        """Provision a Namespace or Project descriptor taken straight from the desired set."""

        display_name = descriptor.name if descriptor.kind == "Project" else None
        return self.ensure(descriptor.name, session, descriptor.labels or None, display_name=display_name)

    def _traceability_labels(self) -> Dict[str, str]:
        current = self.gateway.current_namespace
        return {TRACEABILITY_LABEL: current} if current else {}

    @staticmethod
    def _project_request(name: str, labels: Dict[str, str], display_name: Optional[str]) -> Manifest:
        request: Manifest = {
            "apiVersion": PROJECT_REQUEST_API_VERSION,
            "kind": "ProjectRequest",
            "metadata": _metadata(name, labels),
        }
        if display_name:
            request["displayName"] = display_name
        return request

    @staticmethod
    def _namespace(name: str, labels: Dict[str, str]) -> Manifest:
        return {"apiVersion": "v1", "kind": "Namespace", "metadata": _metadata(name, labels)}


def _metadata(name: str, labels: Dict[str, str]) -> Dict[str, object]:
    metadata: Dict[str, object] = {"name": name}
    if labels:
        metadata["labels"] = dict(labels)
    return metadata


__all__ = ["NamespaceProvisioner", "TRACEABILITY_LABEL"]
