"""Equivalence checks between desired and live resources."""

from .equivalence import config_equal, metadata_equal, resources_equal, section_equal

__all__ = ["config_equal", "metadata_equal", "resources_equal", "section_equal"]
