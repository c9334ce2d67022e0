from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


class ResponseJournal:
    """Archive the server's answer to each create/update under ``root`` for auditing.

    Files are laid out as ``<root>/<namespace>/<kind>-<name>.json``; the namespace
    directory is left out for cluster-scoped objects. An existing file is never
    overwritten: the next free ``-1``, ``-2`` ... suffix is used instead.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def record(self, namespace: Optional[str], desired: Mapping[str, Any], answer: Any) -> Optional[Path]:
        metadata = desired.get("metadata") or {}
        name = str(metadata.get("name") or "")
        if not name:
            logger.warning("No name for the entity %s; not archiving the response", desired.get("kind"))
            return None
        kind = str(desired.get("kind") or "")
        stem = f"{kind.lower()}-{name}" if kind else name

        directory = self.root / namespace if namespace else self.root
        target = self._free_path(directory, stem)
        text = answer if isinstance(answer, str) else json.dumps(answer, indent=2, default=str)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write %s: %s", target, exc)
            return None
        logger.debug("Archived response for %s %s to %s", kind, name, target)
        return target

    @staticmethod
    def _free_path(directory: Path, stem: str) -> Path:
        candidate = directory / f"{stem}.json"
        index = 1
        while candidate.exists():
            candidate = directory / f"{stem}-{index}.json"
            index += 1
        return candidate


__all__ = ["ResponseJournal"]
