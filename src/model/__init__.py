"""Data model shared by the apply engine components."""

from .descriptor import (
    Action,
    ApplyOutcome,
    ResourceDescriptor,
    SessionContext,
    flatten_desired,
    order_for_apply,
)

__all__ = [
    "Action",
    "ApplyOutcome",
    "ResourceDescriptor",
    "SessionContext",
    "flatten_desired",
    "order_for_apply",
]
