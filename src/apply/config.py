from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from src.common.errors import ConfigurationError
from src.common.options import normalise_option_name


@dataclass(frozen=True)
class PolicyConfig:
    """Options controlling how the engine converges each resource."""

    allow_create: bool = True
    recreate_mode: bool = False
    services_only_mode: bool = False
    ignore_service_mode: bool = False
    ignore_running_oauth_clients: bool = True
    ignore_bound_persistent_volume_claims: bool = True
    rolling_upgrade: bool = False
    rolling_upgrade_preserve_scale: bool = True
    delete_pods_on_replication_controller_update: bool = True
    namespace: Optional[str] = None
    process_templates_locally: bool = False
    log_json_dir: Optional[Path] = None
    fail_fast: bool = True
    field_manager: str = "k8s-apply"

    def __post_init__(self) -> None:
        if self.log_json_dir is not None and not isinstance(self.log_json_dir, Path):
            object.__setattr__(self, "log_json_dir", Path(self.log_json_dir))
        if self.namespace is not None and not str(self.namespace).strip():
            object.__setattr__(self, "namespace", None)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "PolicyConfig":
        known = {entry.name for entry in dataclasses.fields(cls)}
        values: Dict[str, Any] = {}
        for raw_name, value in options.items():
            name = normalise_option_name(str(raw_name))
            if name not in known:
                raise ConfigurationError(f"Unknown apply option: {raw_name}")
            values[name] = value
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "PolicyConfig":
        """Copy with every non-None override applied."""

        known = {entry.name for entry in dataclasses.fields(self)}
        changes: Dict[str, Any] = {}
        for name, value in overrides.items():
            if value is None:
                continue
            if name not in known:
                raise ConfigurationError(f"Unknown apply option: {name}")
            changes[name] = value
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        if self.log_json_dir is not None:
            data["log_json_dir"] = str(self.log_json_dir)
        return data


def load_policy(path: Optional[Path]) -> PolicyConfig:
    """Read a PolicyConfig from YAML; options may sit under a top-level ``apply:`` key."""

    if path is None:
        return PolicyConfig()
    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {path}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    section = data.get("apply", data)
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'apply' section in {path} must be a mapping")
    return PolicyConfig.from_mapping(section)


__all__ = ["PolicyConfig", "load_policy"]
