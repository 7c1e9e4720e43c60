"""
Git object model — the four native object kinds and their outgoing edges.

Objects are immutable byte payloads identified by git's own hash. This
module only parses the references a payload carries; reading and writing
the local object database lives in ``gitanchor.adapters.vcs.git``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ObjectType = Literal["blob", "tree", "commit", "tag"]

OBJECT_TYPES: tuple[str, ...] = ("blob", "tree", "commit", "tag")

# Submodule entries point at commits in another repository.
GITLINK_MODE = b"160000"
TREE_MODE = b"40000"


@dataclass(frozen=True)
class TreeEntry:
    """One ``<mode> <name>\\0<oid>`` record of a tree payload."""

    mode: bytes
    name: bytes
    oid: str

    @property
    def is_gitlink(self) -> bool:
        return self.mode == GITLINK_MODE


@dataclass(frozen=True)
class GitObject:
    """A git object exactly as stored: type, hash and raw payload."""

    type: ObjectType
    oid: str
    data: bytes

    @property
    def raw_hash_len(self) -> int:
        """Binary oid length for this repository's hash (20 for SHA-1, 32 for SHA-256)."""
        return len(self.oid) // 2

    def references(self) -> list[str]:
        """Hashes of the objects this payload points at, in payload order.

        Trees yield their entries (gitlinks excluded), commits yield the
        tree then each parent, tags yield their target. Blobs have none.
        """
        if self.type == "tree":
            return [e.oid for e in parse_tree(self.data, self.raw_hash_len) if not e.is_gitlink]
        if self.type == "commit":
            return parse_commit_refs(self.data)
        if self.type == "tag":
            target = parse_tag_target(self.data)
            return [target] if target else []
        return []


def parse_tree(data: bytes, hash_len: int = 20) -> list[TreeEntry]:
    """Split a binary tree payload into its entries.

    Raises:
        ValueError: If the payload is truncated or malformed.
    """
    entries: list[TreeEntry] = []
    ofs = 0
    while ofs < len(data):
        space = data.find(b" ", ofs)
        nul = data.find(b"\0", ofs)
        if space < 0 or nul < 0 or space > nul:
            raise ValueError(f"malformed tree entry at offset {ofs}")
        end = nul + 1 + hash_len
        if end > len(data):
            raise ValueError(f"truncated tree entry at offset {ofs}")
        entries.append(
            TreeEntry(
                mode=data[ofs:space],
                name=data[space + 1:nul],
                oid=data[nul + 1:end].hex(),
            )
        )
        ofs = end
    return entries


def parse_commit_refs(data: bytes) -> list[str]:
    """Return ``[tree, parent...]`` from a commit header.

    Only the header (up to the first blank line) is scanned; continuation
    lines of multi-line headers (``gpgsig``, ``mergetag``) start with a
    space and are skipped.
    """
    refs: list[str] = []
    for line in data.split(b"\n"):
        if not line:
            break
        if line.startswith(b"tree ") or line.startswith(b"parent "):
            refs.append(line.split(b" ", 1)[1].strip().decode("ascii"))
    return refs


def parse_tag_target(data: bytes) -> str | None:
    """Return the ``object`` hash a tag points at."""
    for line in data.split(b"\n"):
        if not line:
            break
        if line.startswith(b"object "):
            return line.split(b" ", 1)[1].strip().decode("ascii")
    return None

