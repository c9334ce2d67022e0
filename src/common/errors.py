"""Error taxonomy shared by the apply engine components."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from src.model.descriptor import ApplyOutcome


class ConfigurationError(ValueError):
    """Raised for input the engine can never act on (unknown kind, missing name, ...)."""


class CapabilityUnavailable(RuntimeError):
    """Raised when a platform-specific kind meets a cluster that does not serve it."""


class CreationDisabled(RuntimeError):
    """Raised when a missing resource would have to be created but creation is off."""


class ApplyError(RuntimeError):
    """A cluster call failed while applying one resource; the batch is aborted."""

    def __init__(
        self,
        message: str,
        *,
        identity: Optional[str] = None,
        source: Optional[str] = None,
        outcomes: Optional[List["ApplyOutcome"]] = None,
    ) -> None:
        super().__init__(message)
        self.identity = identity
        self.source = source
        self.outcomes: List["ApplyOutcome"] = list(outcomes or [])


__all__ = ["ApplyError", "CapabilityUnavailable", "ConfigurationError", "CreationDisabled"]
