from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from src.common.errors import ApplyError, CapabilityUnavailable, ConfigurationError, CreationDisabled
from src.common.kinds import NAMESPACE_KINDS, KINDS, is_custom_kind, kind_info
from src.compare.equivalence import resources_equal
from src.gateway.base import ClusterGateway, GatewayError, Manifest
from src.model.descriptor import (
    Action,
    ApplyOutcome,
    ResourceDescriptor,
    SessionContext,
    flatten_desired,
    order_for_apply,
)
from src.patcher.patcher import PatchDispatcher
from src.provisioner.namespaces import NamespaceProvisioner

from .config import PolicyConfig
from .journal import ResponseJournal

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"

Handler = Callable[[ResourceDescriptor, Optional[str], str, SessionContext], ApplyOutcome]


class ApplyEngine:
    """Converge a desired set of resources against one cluster.

    Each descriptor is routed by kind to a handler. Most kinds share the generic
    get / compare / create, patch or recreate flow; the rest add kind-specific
    safety rules. OpenShift-only kinds are skipped with a warning on a plain
    cluster and a missing resource is skipped when creation is disabled, while any
    gateway failure aborts the batch (unless ``fail_fast`` is off).
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        config: Optional[PolicyConfig] = None,
        *,
        patcher: Optional[PatchDispatcher] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PolicyConfig()
        self.patcher = patcher or PatchDispatcher()
        self.journal = ResponseJournal(self.config.log_json_dir) if self.config.log_json_dir else None
        self.provisioner = NamespaceProvisioner(gateway, on_created=self._archive_namespace)
        self._handlers: Dict[str, Handler] = {
            "Namespace": self._apply_namespace,
            "Project": self._apply_namespace,
            "OAuthClient": self._apply_oauth_client,
            "Template": self._apply_template,
            "ImageStream": self._apply_image_stream,
            "ReplicationController": self._apply_replication_controller,
            "PersistentVolumeClaim": self._apply_persistent_volume_claim,
            "Ingress": self._apply_ingress,
        }
        for kind in KINDS:
            self._handlers.setdefault(kind, self._apply_generic)

    # Entry points #############################################################

    def apply(
        self,
        desired: Any,
        source_label: str,
        session: Optional[SessionContext] = None,
    ) -> List[ApplyOutcome]:
        """Apply a single manifest, a list, a ``*List`` wrapper or any nesting of those."""

        session = session if session is not None else SessionContext()
        descriptors = order_for_apply(flatten_desired(desired))
        for descriptor in descriptors:
            self._validate(descriptor, source_label)

        outcomes: List[ApplyOutcome] = []
        for descriptor in descriptors:
            namespace = descriptor.namespace
            try:
                namespace = self.effective_namespace(descriptor)
                outcome = self._apply_one(descriptor, namespace, source_label, session)
            except GatewayError as exc:
                identity = descriptor.describe(namespace)
                logger.error("Failed to apply %s from %s: %s", identity, source_label, exc, exc_info=True)
                if self.config.fail_fast:
                    raise ApplyError(
                        f"Failed to apply {identity} from {source_label}: {exc}",
                        identity=identity,
                        source=source_label,
                        outcomes=outcomes,
                    ) from exc
                outcome = self._outcome(descriptor, namespace, Action.FAILED, str(exc))
            outcomes.append(outcome)
        return outcomes

    def is_already_applied(self, descriptor: Any) -> bool:
        """Whether the resource already exists in its effective namespace."""

        if not isinstance(descriptor, ResourceDescriptor):
            descriptor = ResourceDescriptor.from_dict(descriptor)
        self._validate(descriptor, "existence check")
        if descriptor.kind in NAMESPACE_KINDS:
            return self.gateway.namespace_exists(descriptor.name)
        namespace = self.effective_namespace(descriptor)
        return self._fetch(descriptor, namespace) is not None

    def effective_namespace(self, descriptor: ResourceDescriptor) -> Optional[str]:
        """Namespace the resource lives in, or ``None`` for cluster-scoped kinds (custom ones via discovery)."""

        if not self.gateway.is_namespaced(descriptor.kind, descriptor.api_version):
            return None
        return (
            descriptor.namespace
            or self.config.namespace
            or self.gateway.current_namespace
            or DEFAULT_NAMESPACE
        )

    # Dispatch #################################################################

    def _validate(self, descriptor: ResourceDescriptor, source_label: str) -> None:
        kind = descriptor.kind
        if not kind:
            raise ConfigurationError(f"Resource from {source_label} has no kind")
        if kind not in self._handlers and not is_custom_kind(kind, descriptor.body.get("apiVersion")):
            raise ConfigurationError(f"Unknown kind {kind!r} from {source_label}")
        if not descriptor.name.strip():
            raise ConfigurationError(f"No name for {kind} from {source_label}")

    def _handler_for(self, descriptor: ResourceDescriptor) -> Handler:
        handler = self._handlers.get(descriptor.kind)
        if handler is not None:
            return handler
        return self._apply_custom_resource

    def _apply_one(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        kind = descriptor.kind

        if self.config.services_only_mode and kind != "Service" and kind not in NAMESPACE_KINDS:
            logger.debug("Only processing Services right now so ignoring %s", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.SKIPPED_WARN, "services-only mode")
        if self.config.ignore_service_mode and kind == "Service":
            logger.debug("Ignoring %s", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.SKIPPED_WARN, "service processing disabled")

        try:
            self._check_capability(descriptor)
            if namespace is not None:
                self.provisioner.ensure(namespace, session)
            return self._handler_for(descriptor)(descriptor, namespace, source_label, session)
        except (CapabilityUnavailable, CreationDisabled) as exc:
            logger.warning("%s", exc)
            return self._outcome(descriptor, namespace, Action.SKIPPED_WARN, str(exc))

    def _check_capability(self, descriptor: ResourceDescriptor) -> None:
        info = kind_info(descriptor.kind)
        if info is not None and info.openshift_only and not self.gateway.is_openshift():
            raise CapabilityUnavailable(
                f"Not running against OpenShift so ignoring {descriptor.kind} {descriptor.name}"
            )

    # Handlers #################################################################

    def _apply_generic(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        old = self._fetch(descriptor, namespace)
        if old is None:
            self._create(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.CREATED)
        if resources_equal(descriptor.body, old):
            logger.info("%s has not changed so not doing anything", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.NOOP)
        if self.config.recreate_mode:
            self._recreate(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.RECREATED)
        return self._patch_outcome(descriptor, namespace, old, source_label)

    def _apply_namespace(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        if self.provisioner.ensure_descriptor(descriptor, session):
            return self._outcome(descriptor, None, Action.CREATED)
        return self._outcome(descriptor, None, Action.NOOP)

    def _apply_persistent_volume_claim(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        old = self._fetch(descriptor, namespace)
        if old is None:
            self._create(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.CREATED)
        if resources_equal(descriptor.body, old):
            logger.info("%s has not changed so not doing anything", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.NOOP)
        if not self.config.recreate_mode:
            return self._patch_outcome(descriptor, namespace, old, source_label)
        if self.config.ignore_bound_persistent_volume_claims and _is_bound(old):
            logger.warning(
                "%s is already bound and will not be replaced with the new one from %s",
                descriptor.describe(namespace),
                source_label,
            )
            return self._outcome(descriptor, namespace, Action.SKIPPED_WARN, "claim is bound")
        self._recreate(descriptor, namespace, source_label)
        return self._outcome(descriptor, namespace, Action.RECREATED)

    def _apply_oauth_client(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        old = self._fetch(descriptor, None)
        if old is None:
            self._create(descriptor, None, source_label)
            return self._outcome(descriptor, None, Action.CREATED)
        if resources_equal(descriptor.body, old):
            logger.info("%s has not changed so not doing anything", descriptor.describe())
            return self._outcome(descriptor, None, Action.NOOP)
        if self.config.ignore_running_oauth_clients:
            logger.warning(
                "Not updating %s which is shared across namespaces as it is already running",
                descriptor.describe(),
            )
            return self._outcome(descriptor, None, Action.SKIPPED_WARN, "OAuthClient is already running")
        if self.config.recreate_mode:
            self._recreate(descriptor, None, source_label)
            return self._outcome(descriptor, None, Action.RECREATED)
        self._replace(descriptor, None, old, source_label)
        return self._outcome(descriptor, None, Action.PATCHED)

    def _apply_template(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        if self.config.process_templates_locally:
            logger.info("Templates are processed locally so not installing %s", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.NOOP, "template processed locally")
        old = self._fetch(descriptor, namespace)
        if old is None:
            self._create(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.CREATED)
        if resources_equal(descriptor.body, old):
            logger.info("%s has not changed so not doing anything", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.NOOP)
        # Templates cannot be updated in place.
        self._recreate(descriptor, namespace, source_label)
        return self._outcome(descriptor, namespace, Action.RECREATED)

    def _apply_image_stream(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        old = self._fetch(descriptor, namespace)
        if old is None:
            self._create(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.CREATED)
        merged = descriptor.copy()
        merged.body.setdefault("spec", {})["tags"] = merge_image_stream_tags(
            (old.get("spec") or {}).get("tags"),
            descriptor.spec.get("tags"),
        )
        if resources_equal(merged.body, old):
            logger.info("%s has not changed so not doing anything", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.NOOP)
        return self._patch_outcome(descriptor, namespace, old, source_label, patch_from=merged)

    def _apply_replication_controller(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        old = self._fetch(descriptor, namespace)
        if old is None:
            self._create(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.CREATED)
        if resources_equal(descriptor.body, old):
            logger.info("%s has not changed so not doing anything", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.NOOP)

        if self.config.rolling_upgrade:
            body = descriptor.to_dict()
            old_replicas = (old.get("spec") or {}).get("replicas")
            if self.config.rolling_upgrade_preserve_scale and old_replicas is not None and body.get("spec"):
                body["spec"]["replicas"] = old_replicas
            body.setdefault("metadata", {})["resourceVersion"] = (old.get("metadata") or {}).get("resourceVersion")
            logger.info(
                "Rolling upgrade of %s (preserve scale: %s, replicas: %s)",
                descriptor.describe(namespace),
                self.config.rolling_upgrade_preserve_scale,
                (body.get("spec") or {}).get("replicas"),
            )
            answer = self.gateway.rolling_replace(namespace, descriptor.name, body)
            self._archive(namespace, body, answer)
            return self._outcome(descriptor, namespace, Action.PATCHED, "rolling upgrade")

        if self.config.recreate_mode:
            self._recreate(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.RECREATED)

        outcome = self._patch_outcome(descriptor, namespace, old, source_label)
        if outcome.action is not Action.PATCHED:
            return outcome
        selector = descriptor.spec.get("selector")
        if not self.config.delete_pods_on_replication_controller_update:
            logger.info("Not deleting any pods so they could well be running with the old configuration")
        elif not selector:
            logger.warning("%s has no selector so its pods were not deleted", descriptor.describe(namespace))
        else:
            logger.info("Deleting any pods for %s so they use the new configuration", descriptor.describe(namespace))
            self.gateway.delete_all("Pod", namespace, selector)
        return outcome

    def _apply_ingress(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        outcome = self._apply_generic(descriptor, namespace, source_label, session)
        if not session.ingress_checked:
            session.ingress_checked = True
            self._check_ingress_controllers()
        return outcome

    def _apply_custom_resource(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        source_label: str,
        session: SessionContext,
    ) -> ApplyOutcome:
        old = self._fetch(descriptor, namespace)
        if old is None:
            self._create(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.CREATED)
        if resources_equal(descriptor.body, old):
            logger.info("%s has not changed so not doing anything", descriptor.describe(namespace))
            return self._outcome(descriptor, namespace, Action.NOOP)
        if self.config.recreate_mode:
            self._recreate(descriptor, namespace, source_label)
            return self._outcome(descriptor, namespace, Action.RECREATED)
        self._replace(descriptor, namespace, old, source_label)
        return self._outcome(descriptor, namespace, Action.PATCHED)

    # Cluster calls ############################################################

    def _fetch(self, descriptor: ResourceDescriptor, namespace: Optional[str]) -> Optional[Manifest]:
        return self.gateway.get(descriptor.kind, namespace, descriptor.name, descriptor.api_version)

    def _create(self, descriptor: ResourceDescriptor, namespace: Optional[str], source_label: str) -> Manifest:
        if not self.config.allow_create:
            raise CreationDisabled(
                f"Creation disabled so not creating {descriptor.describe(namespace)} from {source_label}"
            )
        return self._send_create(descriptor, namespace, source_label)

    def _send_create(self, descriptor: ResourceDescriptor, namespace: Optional[str], source_label: str) -> Manifest:
        body = descriptor.to_dict()
        metadata = body.setdefault("metadata", {})
        metadata.pop("resourceVersion", None)
        if namespace is not None:
            metadata["namespace"] = namespace
        if not body.get("apiVersion") and descriptor.api_version:
            body["apiVersion"] = descriptor.api_version
        logger.info("Creating %s from %s", descriptor.describe(namespace), source_label)
        answer = self.gateway.create(namespace, body)
        self._archive(namespace, body, answer)
        return answer

    def _recreate(self, descriptor: ResourceDescriptor, namespace: Optional[str], source_label: str) -> Manifest:
        logger.info("Deleting %s", descriptor.describe(namespace))
        self.gateway.delete(descriptor.kind, namespace, descriptor.name, descriptor.api_version)
        return self._send_create(descriptor, namespace, source_label)

    def _patch(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        old: Manifest,
        source_label: str,
    ) -> Optional[Manifest]:
        """Patch the live object; ``None`` when no change was sent."""

        desired = descriptor.copy()
        logger.info("Updating %s from %s", desired.describe(namespace), source_label)
        answer = self.patcher.patch(self.gateway, namespace, desired, ResourceDescriptor(old))
        if _resource_version(answer) == _resource_version(old):
            return None
        self._archive(namespace, desired.body, answer)
        return answer

    def _patch_outcome(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        old: Manifest,
        source_label: str,
        patch_from: Optional[ResourceDescriptor] = None,
    ) -> ApplyOutcome:
        target = patch_from or descriptor
        answer = self._patch(target, namespace, old, source_label)
        unowned = self.patcher.unowned_changes(target, ResourceDescriptor(old))
        if unowned:
            logger.warning(
                "%s: %s cannot be patched and %s left unchanged",
                descriptor.describe(namespace),
                ", ".join(unowned),
                "was" if len(unowned) == 1 else "were",
            )
        if answer is None:
            detail = f"cannot patch {', '.join(unowned)}" if unowned else "no patchable change"
            return self._outcome(descriptor, namespace, Action.SKIPPED_WARN, detail)
        detail = f"left unchanged: {', '.join(unowned)}" if unowned else ""
        return self._outcome(descriptor, namespace, Action.PATCHED, detail)

    def _replace(
        self,
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        old: Manifest,
        source_label: str,
    ) -> Manifest:
        body = descriptor.to_dict()
        metadata = body.setdefault("metadata", {})
        metadata["resourceVersion"] = (old.get("metadata") or {}).get("resourceVersion")
        if namespace is not None:
            metadata["namespace"] = namespace
        logger.info("Replacing %s from %s", descriptor.describe(namespace), source_label)
        answer = self.gateway.replace(namespace, descriptor.name, body)
        self._archive(namespace, body, answer)
        return answer

    def _check_ingress_controllers(self) -> None:
        try:
            classes = self.gateway.list("IngressClass")
        except GatewayError as exc:
            logger.warning("Unable to check for ingress controllers: %s", exc)
            return
        if not classes:
            logger.warning("No IngressClass found in the cluster; Ingress resources will not be served")

    # Bookkeeping ##############################################################

    def _archive(self, namespace: Optional[str], desired: Manifest, answer: Any) -> None:
        if self.journal is not None:
            self.journal.record(namespace, desired, answer)

    def _archive_namespace(self, answer: Manifest) -> None:
        self._archive(None, answer, answer)

    @staticmethod
    def _outcome(
        descriptor: ResourceDescriptor,
        namespace: Optional[str],
        action: Action,
        detail: str = "",
    ) -> ApplyOutcome:
        return ApplyOutcome(descriptor.kind, descriptor.name, action, detail, namespace)


def merge_image_stream_tags(existing: Optional[List[Dict[str, Any]]], desired: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Existing tags minus those named in ``desired``, followed by every desired tag."""

    desired_tags = list(desired or [])
    names = {tag.get("name") for tag in desired_tags if isinstance(tag, dict)}
    kept = [tag for tag in existing or [] if not (isinstance(tag, dict) and tag.get("name") in names)]
    return kept + desired_tags


def _is_bound(claim: Manifest) -> bool:
    return (claim.get("status") or {}).get("phase") == "Bound"


def _resource_version(manifest: Optional[Manifest]) -> Optional[str]:
    return ((manifest or {}).get("metadata") or {}).get("resourceVersion")


__all__ = ["ApplyEngine", "DEFAULT_NAMESPACE", "merge_image_stream_tags"]
