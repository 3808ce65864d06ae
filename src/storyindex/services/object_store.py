"""Local filesystem object store.

Keys are ``/``-separated relative paths under the store root, e.g.
``stories/{story_id}.txt``. File I/O runs in a worker thread so the event
loop never blocks on disk. Content types are kept in a ``.meta.json``
sidecar only for binary uploads.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path, PurePosixPath
from typing import Any

from storyindex.services.interfaces import ObjectStore
from storyindex.utils.errors import StorageError

_META_SUFFIX = ".meta.json"


class LocalObjectStore(ObjectStore):
    """ObjectStore rooted at a local directory."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        """Resolve *key* to a path under the root, rejecting traversal."""
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or any(p in ("..", "") for p in parts):
            raise StorageError(f"Invalid object key '{key}'", provider_name="local")
        return self._root.joinpath(*parts)

    async def put_text(self, key: str, content: str) -> None:
        await asyncio.to_thread(self._write, key, content.encode("utf-8"))

    async def put_json(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False).encode("utf-8")
        await asyncio.to_thread(self._write, key, payload)

    async def put_bytes(self, key: str, content: bytes, content_type: str) -> None:
        await asyncio.to_thread(self._write, key, content)
        meta = json.dumps({"content_type": content_type}).encode("utf-8")
        await asyncio.to_thread(self._write, key + _META_SUFFIX, meta)

    async def get_text(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_text, encoding="utf-8")

    async def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._unlink, key)

    async def delete_prefix(self, prefix: str) -> int:
        return await asyncio.to_thread(self._unlink_prefix, prefix)

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _write(self, key: str, payload: bytes) -> None:
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(payload)
            tmp.replace(path)
        except OSError as exc:
            raise StorageError(f"Cannot write '{key}': {exc}", provider_name="local") from exc

    def _unlink(self, key: str) -> None:
        for path in (self.path_for(key), self.path_for(key + _META_SUFFIX)):
            path.unlink(missing_ok=True)

    def _unlink_prefix(self, prefix: str) -> int:
        prefix = prefix.rstrip("/")
        base = self.path_for(prefix)
        if base.is_dir():
            removed = 0
            for path in sorted(base.rglob("*"), reverse=True):
                if path.is_file():
                    path.unlink()
                    if not path.name.endswith(_META_SUFFIX):
                        removed += 1
                elif path.is_dir():
                    path.rmdir()
            base.rmdir()
            return removed
        return 0
