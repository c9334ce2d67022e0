from __future__ import annotations

from typing import Any, Dict, List

import jsonpatch

RESOURCE_VERSION_PATH = "/metadata/resourceVersion"


def build_edit_patch(live: Dict[str, Any], mutated: Dict[str, Any]) -> List[Dict[str, Any]]:
    """RFC 6902 operations turning ``live`` into ``mutated``, guarded by a resourceVersion test.

    The resourceVersion carried on ``mutated`` becomes a leading ``test`` operation,
    so the server rejects the patch if the object changed since it was read.
    Returns an empty list when nothing but the resourceVersion differs.
    """

    ops = [
        op
        for op in jsonpatch.make_patch(live, mutated).patch
        if op.get("path") != RESOURCE_VERSION_PATH
    ]
    if not ops:
        return []
    carried = (mutated.get("metadata") or {}).get("resourceVersion")
    if carried is not None:
        ops.insert(0, {"op": "test", "path": RESOURCE_VERSION_PATH, "value": carried})
    return ops


__all__ = ["RESOURCE_VERSION_PATH", "build_edit_patch"]
