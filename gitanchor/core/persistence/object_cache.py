"""
Local Object Cache — git oid ↔ content address memo.

A hit means "this object and everything it reaches is already encoded
in the store" (encode) or "already written to the local object database"
(decode), so the transcoder can skip the whole subtree.

The cache is an explicitly owned object handed to the transcoder, never
a module-level singleton. With ``path=None`` it lives only in memory
(tests); with a path it loads on construction and ``flush()`` writes it
back atomically (write to temp file, then rename), the same way the
state file is saved.
"""

from __future__ import annotations

import json
import logging
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path

from gitanchor.core.models.cache import ObjectCacheState

logger = logging.getLogger(__name__)

# Relative to the repository's git dir
DEFAULT_CACHE_DIR = "gitanchor/cache"


def default_cache_path(git_dir: Path, namespace: str) -> Path:
    """Cache file for one store namespace inside a repository."""
    safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in namespace) or "default"
    return git_dir / DEFAULT_CACHE_DIR / f"{safe}.json"


class ObjectCache:
    """Bidirectional oid ↔ address map, optionally persisted to disk."""

    def __init__(self, path: Path | None = None, namespace: str = ""):
        self._path = path
        self._lock = threading.Lock()
        self._dirty = False
        self._state = ObjectCacheState(namespace=namespace)

        if path and path.is_file():
            self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def __len__(self) -> int:
        return len(self._state.git_to_address)

    # ── Lookups ─────────────────────────────────────────────────

    def address_for(self, oid: str) -> str | None:
        """Content address already known for a git object."""
        with self._lock:
            return self._state.git_to_address.get(oid)

    def oid_for(self, address: str) -> str | None:
        """Git object already materialized from a content address."""
        with self._lock:
            return self._state.address_to_git.get(address)

    # ── Mutations ───────────────────────────────────────────────

    def record(self, oid: str, address: str) -> None:
        """Remember that ``oid`` is encoded at ``address``."""
        with self._lock:
            if self._state.git_to_address.get(oid) == address:
                return
            self._state.git_to_address[oid] = address
            self._state.address_to_git[address] = oid
            self._dirty = True

    def forget(self, oids: Iterable[str]) -> int:
        """Drop entries (e.g. objects whose pin never succeeded)."""
        dropped = 0
        with self._lock:
            for oid in oids:
                address = self._state.git_to_address.pop(oid, None)
                if address is None:
                    continue
                self._state.address_to_git.pop(address, None)
                dropped += 1
            if dropped:
                self._dirty = True
        return dropped

    def clear(self) -> None:
        """Explicit cache invalidation; persisted immediately."""
        with self._lock:
            self._state.git_to_address.clear()
            self._state.address_to_git.clear()
            self._dirty = True
        self.flush()

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "namespace": self._state.namespace,
                "path": str(self._path) if self._path else None,
                "entries": len(self._state.git_to_address),
                "updated_at": self._state.updated_at,
            }

    # ── Persistence ─────────────────────────────────────────────

    def flush(self) -> None:
        """Write the cache to disk if it changed (atomic write)."""
        if self._path is None:
            return
        with self._lock:
            if not self._dirty:
                return
            self._state.touch()
            content = json.dumps(self._state.model_dump(mode="json"), indent=1) + "\n"
            self._dirty = False

        path = self._path
        path.parent.mkdir(parents=True, exist_ok=True)
        _fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".cache_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with open(_fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(path)
            logger.debug("Object cache saved to %s", path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def _load(self) -> None:
        assert self._path is not None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            state = ObjectCacheState.model_validate(data)
        except (json.JSONDecodeError, OSError, ValueError) as e:
            logger.warning("Corrupt object cache %s: %s — starting fresh", self._path, e)
            return
        if state.namespace and self._state.namespace and state.namespace != self._state.namespace:
            logger.warning(
                "Object cache %s belongs to namespace %r, not %r — starting fresh",
                self._path, state.namespace, self._state.namespace,
            )
            return
        state.namespace = self._state.namespace or state.namespace
        self._state = state
        logger.debug("Loaded %d cached objects from %s", len(self), self._path)
