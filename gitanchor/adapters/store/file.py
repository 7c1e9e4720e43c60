"""
File block store — blocks as files in a sharded local directory.

Layout under ``root``::

    blocks/ab/cdef…   one file per block, named by its sha256
    pins/ab/cdef…     empty marker per pinned block

Writes go to a temp file and are renamed into place, so a crash never
leaves a truncated block behind. Suitable for a single machine or a
shared filesystem; it is also what the end-to-end tests run against.
"""

from __future__ import annotations

import hashlib
import logging
import tempfile
from pathlib import Path

from gitanchor.adapters.base import BlockStore
from gitanchor.core.errors import TransientIOError

logger = logging.getLogger(__name__)

ADDRESS_PREFIX = "sha256:"


class FileBlockStore(BlockStore):
    """Directory-backed content-addressed store."""

    def __init__(self, root: Path):
        self._root = Path(root).expanduser()

    @property
    def name(self) -> str:
        return "file"

    @property
    def namespace(self) -> str:
        return f"file-{hashlib.sha256(str(self._root.resolve()).encode()).hexdigest()[:12]}"

    @property
    def root(self) -> Path:
        return self._root

    def is_available(self) -> bool:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return True

    def put(self, data: bytes) -> str:
        digest = hashlib.sha256(data).hexdigest()
        path = self._block_path(digest)
        if path.is_file():
            return ADDRESS_PREFIX + digest
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            _fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".blk_", suffix=".tmp")
            tmp = Path(tmp_path)
            try:
                with open(_fd, "wb") as f:
                    f.write(data)
                tmp.replace(path)
            except Exception:
                tmp.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise TransientIOError(f"cannot write block {digest[:12]}: {e}") from e
        logger.debug("Stored block %s (%d bytes)", digest[:12], len(data))
        return ADDRESS_PREFIX + digest

    def get(self, address: str) -> bytes | None:
        digest = self._digest(address)
        if digest is None:
            return None
        path = self._block_path(digest)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TransientIOError(f"cannot read block {digest[:12]}: {e}") from e

    def pin(self, address: str) -> None:
        digest = self._digest(address)
        if digest is None or not self._block_path(digest).is_file():
            raise TransientIOError(f"cannot pin unknown block {address}")
        marker = self._root / "pins" / digest[:2] / digest[2:]
        try:
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.touch(exist_ok=True)
        except OSError as e:
            raise TransientIOError(f"cannot pin block {digest[:12]}: {e}") from e

    def is_pinned(self, address: str) -> bool:
        digest = self._digest(address)
        return digest is not None and (self._root / "pins" / digest[:2] / digest[2:]).is_file()

    def has(self, address: str) -> bool:
        digest = self._digest(address)
        return digest is not None and self._block_path(digest).is_file()

    def _block_path(self, digest: str) -> Path:
        return self._root / "blocks" / digest[:2] / digest[2:]

    @staticmethod
    def _digest(address: str) -> str | None:
        if not address.startswith(ADDRESS_PREFIX):
            return None
        digest = address[len(ADDRESS_PREFIX):]
        if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
            return None
        return digest
