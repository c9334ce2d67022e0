"""Kind table, option names and error taxonomy shared across components."""

from .errors import ApplyError, CapabilityUnavailable, ConfigurationError, CreationDisabled

__all__ = ["ApplyError", "CapabilityUnavailable", "ConfigurationError", "CreationDisabled"]
