"""Cluster gateway interface and its kubernetes-client adapter."""

from .base import ClusterGateway, ConflictError, GatewayError, ResourceMissingError
from .jsonpatch_edit import build_edit_patch

__all__ = [
    "ClusterGateway",
    "ConflictError",
    "GatewayError",
    "ResourceMissingError",
    "build_edit_patch",
]
