"""Content-addressed on-disk store for fetched remote modules."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class StoredModule:
    """Location and metadata of a stored module."""

    url: str
    path: str
    headers: Dict[str, str]


def _atomic_write(path: str, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temporary file in the same directory."""
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class ModuleStore:
    """Remote module bodies keyed by the sha256 of their URL.

    Bodies live at ``<root>/remote/<scheme>/<hash>`` with a ``.meta.json``
    sidecar holding the URL and response headers. Writes are atomic, so a
    concurrent reader sees either nothing or the complete file.
    """

    def __init__(self, root: str):
        self.root = root

    def path_for(self, url: str) -> str:
        scheme = url.split(":", 1)[0].lower() or "unknown"
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        return os.path.join(self.root, "remote", scheme, digest)

    def put(self, url: str, body: bytes, headers: Optional[Dict[str, str]] = None) -> StoredModule:
        """Persist a module body and its headers, replacing any previous copy."""
        path = self.path_for(url)
        meta = {"url": url, "headers": dict(headers or {})}
        _atomic_write(path, body)
        _atomic_write(path + ".meta.json", json.dumps(meta, indent=2).encode("utf-8"))
        logger.debug("Stored %s at %s", url.split(",", 1)[0], path)
        return StoredModule(url=url, path=path, headers=meta["headers"])

    def get(self, url: str) -> Optional[StoredModule]:
        """Return the stored module for ``url``, or None if it is not stored."""
        path = self.path_for(url)
        meta_path = path + ".meta.json"
        if not (os.path.isfile(path) and os.path.isfile(meta_path)):
            return None
        try:
            with open(meta_path, "r", encoding="utf-8") as handle:
                meta = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable metadata %s: %s", meta_path, exc)
            return None
        return StoredModule(url=url, path=path, headers=meta.get("headers") or {})
