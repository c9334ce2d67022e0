"""Namespace and project provisioning."""

from .namespaces import NamespaceProvisioner

__all__ = ["NamespaceProvisioner"]
