"""
DAG node models — what actually gets written to the block store.

Two node kinds exist:

    git-object   one git object: type, oid, compressed payload, and the
                 (oid, address) pairs of the objects it references
    ref-table    the root of a remote: ref → oid, the symbolic HEAD and
                 the node address of every ref tip

Nodes serialize to canonical JSON (sorted keys, no whitespace) so the
same logical node always produces the same bytes, and therefore the
same content address.
"""

from __future__ import annotations

import base64
import hashlib
import json
import zlib
from typing import Any, Literal

from pydantic import BaseModel, Field

from gitanchor.core.models.objects import GitObject, ObjectType

REF_TABLE_FORMAT = 1


def canonical_json(data: Any) -> bytes:
    """Deterministic UTF-8 JSON encoding."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def refs_digest(refs: dict[str, str], head: str | None = None) -> str:
    """SHA-256 of the canonical ref table, as stored in the anchor."""
    return hashlib.sha256(canonical_json({"refs": refs, "head": head})).hexdigest()


class ObjectNode(BaseModel):
    """Block-store encoding of one git object."""

    kind: Literal["git-object"] = "git-object"
    type: ObjectType
    oid: str
    links: list[tuple[str, str]] = Field(default_factory=list)   # (oid, address)
    payload: str = ""                                             # base64(zlib(raw))

    @classmethod
    def from_object(cls, obj: GitObject, links: list[tuple[str, str]]) -> ObjectNode:
        packed = base64.b64encode(zlib.compress(obj.data, 6)).decode("ascii")
        return cls(type=obj.type, oid=obj.oid, links=links, payload=packed)

    def to_object(self) -> GitObject:
        return GitObject(type=self.type, oid=self.oid, data=self.raw_payload())

    def raw_payload(self) -> bytes:
        return zlib.decompress(base64.b64decode(self.payload))

    def to_bytes(self) -> bytes:
        return canonical_json(self.model_dump(mode="json"))


class RefTableNode(BaseModel):
    """Root node of a remote: the ref table plus entry points into the DAG."""

    kind: Literal["ref-table"] = "ref-table"
    format: int = REF_TABLE_FORMAT
    refs: dict[str, str] = Field(default_factory=dict)       # ref name → oid
    head: str | None = None                                   # symbolic HEAD target
    objects: dict[str, str] = Field(default_factory=dict)    # oid → node address

    def digest(self) -> str:
        return refs_digest(self.refs, self.head)

    def to_bytes(self) -> bytes:
        return canonical_json(self.model_dump(mode="json"))


def parse_node(data: bytes) -> ObjectNode | RefTableNode:
    """Decode block bytes into the matching node model.

    Raises:
        ValueError: If the bytes are not a recognizable node.
    """
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"block is not a gitanchor node: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError("block is not a gitanchor node: expected a JSON object")

    kind = raw.get("kind")
    if kind == "git-object":
        return ObjectNode.model_validate(raw)
    if kind == "ref-table":
        return RefTableNode.model_validate(raw)
    raise ValueError(f"unknown node kind: {kind!r}")
