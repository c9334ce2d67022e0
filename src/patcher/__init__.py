"""Per-kind patch strategies applied through the gateway's edit primitive."""

from .patcher import DEFAULT_PATCHERS, EntityPatcher, PatchDispatcher, TopLevelPatcher

__all__ = ["DEFAULT_PATCHERS", "EntityPatcher", "PatchDispatcher", "TopLevelPatcher"]
