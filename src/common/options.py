"""Shared helpers for normalising policy option names across components."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional


_OPTION_NORMALISATION_MAP = {
    # Creation / update strategy
    "allowcreate": "allow_create",
    "allow-create": "allow_create",
    "recreatemode": "recreate_mode",
    "recreate": "recreate_mode",
    "recreate-mode": "recreate_mode",
    # Staged rollouts
    "servicesonlymode": "services_only_mode",
    "services-only-mode": "services_only_mode",
    "ignoreservicemode": "ignore_service_mode",
    "ignore-service-mode": "ignore_service_mode",
    # Protected objects
    "ignorerunningoauthclients": "ignore_running_oauth_clients",
    "ignore-running-oauth-clients": "ignore_running_oauth_clients",
    "ignoreboundpersistentvolumeclaims": "ignore_bound_persistent_volume_claims",
    "ignore-bound-persistent-volume-claims": "ignore_bound_persistent_volume_claims",
    # Replication controllers
    "rollingupgrade": "rolling_upgrade",
    "rolling-upgrade": "rolling_upgrade",
    "rollingupgradepreservescale": "rolling_upgrade_preserve_scale",
    "rolling-upgrade-preserve-scale": "rolling_upgrade_preserve_scale",
    "deletepodsonreplicationcontrollerupdate": "delete_pods_on_replication_controller_update",
    "delete-pods-on-replication-controller-update": "delete_pods_on_replication_controller_update",
    # Targeting and auditing
    "namespace": "namespace",
    "processtemplateslocally": "process_templates_locally",
    "process-templates-locally": "process_templates_locally",
    "logjsondir": "log_json_dir",
    "log-json-dir": "log_json_dir",
    "failfast": "fail_fast",
    "fail-fast": "fail_fast",
    "fieldmanager": "field_manager",
    "field-manager": "field_manager",
}


@lru_cache(maxsize=None)
def normalise_option_name(option: Optional[str]) -> str:
    """Map a raw option name (camelCase, kebab-case or snake_case) to its attribute name."""

    key = (option or "").strip()
    if not key:
        return ""
    lowered = key.lower()
    if lowered in _OPTION_NORMALISATION_MAP:
        return _OPTION_NORMALISATION_MAP[lowered]
    return lowered.replace("-", "_")


__all__ = ["normalise_option_name"]
