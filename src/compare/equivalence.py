"""Structural comparison of desired and live resources.

Two descriptors are equivalent when everything a user configures matches:
server bookkeeping (resourceVersion, uid, timestamps, status, ...) is ignored,
``None`` and empty collections are the same thing, and a field that one side
leaves unset is treated as server-defaulted rather than as a difference.
Label-like maps are compared exactly; lists are compared as sets except for
sequences whose order carries meaning (container ``command``/``args``).
Resource quantities compare by amount, and a Secret's ``stringData`` is folded
into ``data`` first, the form the server stores.
"""

from __future__ import annotations

import base64
from decimal import InvalidOperation
from typing import Any, Dict, Iterable, Mapping, Optional

from kubernetes.utils.quantity import parse_quantity

# Top-level keys that never participate in the comparison.
IGNORED_TOP_LEVEL = frozenset({"apiVersion", "kind", "metadata", "status"})

# Metadata written by the server.
SERVER_MANAGED_METADATA = frozenset(
    {
        "resourceVersion",
        "uid",
        "generation",
        "creationTimestamp",
        "deletionTimestamp",
        "deletionGracePeriodSeconds",
        "managedFields",
        "selfLink",
    }
)

# Annotations added by controllers or kubectl, never by the desired manifest.
SERVER_MANAGED_ANNOTATION_PREFIXES = (
    "kubectl.kubernetes.io/last-applied-configuration",
    "deployment.kubernetes.io/",
    "pv.kubernetes.io/",
    "volume.kubernetes.io/",
    "volume.beta.kubernetes.io/",
    "openshift.io/generated-by",
)

# String maps whose full key set is user-controlled.
EXACT_MAP_FIELDS = frozenset(
    {"labels", "annotations", "data", "stringData", "binaryData", "matchLabels", "nodeSelector"}
)

# Maps of resource name to quantity ("500m" and 0.5 are the same amount).
QUANTITY_MAP_FIELDS = frozenset(
    {"limits", "requests", "capacity", "hard", "default", "defaultRequest", "max", "min", "maxLimitRequestRatio"}
)

# Lists where element order is significant.
ORDERED_SEQUENCE_FIELDS = frozenset({"command", "args", "initContainers"})


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (dict, list, tuple, str)) and len(value) == 0)


def _user_annotations(annotations: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in (annotations or {}).items()
        if not any(key.startswith(prefix) for prefix in SERVER_MANAGED_ANNOTATION_PREFIXES)
    }


def config_equal(left: Any, right: Any, field: Optional[str] = None) -> bool:
    """Compare two configuration values; ``field`` is the key they were found under."""

    if left is right:
        return True
    if _is_empty(left) and _is_empty(right):
        return True
    if field in EXACT_MAP_FIELDS and (isinstance(left, dict) or isinstance(right, dict)):
        return _exact_map_equal(left or {}, right or {})
    if field in QUANTITY_MAP_FIELDS and isinstance(left, dict) and isinstance(right, dict):
        return _quantity_map_equal(left, right)
    if isinstance(left, dict) and isinstance(right, dict):
        return _object_equal(left, right)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if field in ORDERED_SEQUENCE_FIELDS:
            return _ordered_equal(left, right)
        return _unordered_equal(left, right)
    return left == right


def _exact_map_equal(left: Mapping[str, Any], right: Mapping[str, Any]) -> bool:
    left_keys = {key for key, value in left.items() if value is not None}
    right_keys = {key for key, value in right.items() if value is not None}
    if left_keys != right_keys:
        return False
    return all(config_equal(left[key], right[key], key) for key in left_keys)


def _quantity_map_equal(left: Mapping[str, Any], right: Mapping[str, Any]) -> bool:
    for key in set(left) | set(right):
        a = left.get(key)
        b = right.get(key)
        if _is_empty(a) or _is_empty(b):
            continue
        if not quantity_equal(a, b):
            return False
    return True


def quantity_equal(left: Any, right: Any) -> bool:
    """Compare two resource quantities by amount; values that are not quantities fall back to ``==``."""

    if left == right:
        return True
    if isinstance(left, (dict, list, tuple, bool)) or isinstance(right, (dict, list, tuple, bool)):
        return config_equal(left, right)
    try:
        return parse_quantity(str(left)) == parse_quantity(str(right))
    except (ValueError, TypeError, InvalidOperation):
        return False


def _object_equal(left: Mapping[str, Any], right: Mapping[str, Any]) -> bool:
    for key in set(left) | set(right):
        a = left.get(key)
        b = right.get(key)
        if key in EXACT_MAP_FIELDS:
            if not config_equal(a, b, key):
                return False
            continue
        # Unset on either side: the server fills in a default.
        if _is_empty(a) or _is_empty(b):
            continue
        if not config_equal(a, b, key):
            return False
    return True


def _ordered_equal(left: Iterable[Any], right: Iterable[Any]) -> bool:
    left = list(left)
    right = list(right)
    if len(left) != len(right):
        return False
    return all(config_equal(a, b) for a, b in zip(left, right))


def _contained(items: Iterable[Any], candidates: Iterable[Any]) -> bool:
    pool = list(candidates)
    return all(any(config_equal(item, candidate) for candidate in pool) for item in items)


def _unordered_equal(left: Iterable[Any], right: Iterable[Any]) -> bool:
    left = list(left)
    right = list(right)
    return _contained(left, right) and _contained(right, left)


def fold_string_data(manifest: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return a Secret with its ``stringData`` folded into base64 ``data``, the way the server stores it."""

    if manifest.get("kind") != "Secret" or not manifest.get("stringData"):
        return manifest
    folded = dict(manifest)
    data = dict(folded.get("data") or {})
    for key, value in (folded.pop("stringData") or {}).items():
        if value is not None:
            data[key] = base64.b64encode(str(value).encode("utf-8")).decode("ascii")
    folded["data"] = data
    return folded


def metadata_equal(left: Optional[Mapping[str, Any]], right: Optional[Mapping[str, Any]]) -> bool:
    left = dict(left or {})
    right = dict(right or {})
    for meta in (left, right):
        for key in SERVER_MANAGED_METADATA:
            meta.pop(key, None)
        meta["annotations"] = _user_annotations(meta.get("annotations"))
    return _object_equal(left, right)


def section_equal(left: Optional[Mapping[str, Any]], right: Optional[Mapping[str, Any]], section: str) -> bool:
    """Compare one top-level section (``spec``, ``data``, ...) of two manifests."""

    return _object_equal({section: (left or {}).get(section)}, {section: (right or {}).get(section)})


def resources_equal(desired: Mapping[str, Any], existing: Optional[Mapping[str, Any]]) -> bool:
    """True when ``existing`` already matches everything ``desired`` configures."""

    if existing is None:
        return False
    desired = fold_string_data(desired)
    existing = fold_string_data(existing)
    if desired.get("kind") != existing.get("kind"):
        return False
    if not metadata_equal(desired.get("metadata"), existing.get("metadata")):
        return False
    return _object_equal(
        {key: value for key, value in desired.items() if key not in IGNORED_TOP_LEVEL},
        {key: value for key, value in existing.items() if key not in IGNORED_TOP_LEVEL},
    )


__all__ = [
    "EXACT_MAP_FIELDS",
    "IGNORED_TOP_LEVEL",
    "ORDERED_SEQUENCE_FIELDS",
    "QUANTITY_MAP_FIELDS",
    "SERVER_MANAGED_ANNOTATION_PREFIXES",
    "SERVER_MANAGED_METADATA",
    "config_equal",
    "fold_string_data",
    "metadata_equal",
    "quantity_equal",
    "resources_equal",
    "section_equal",
]
