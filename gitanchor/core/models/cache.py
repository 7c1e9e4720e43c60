"""
ObjectCacheState — the persisted form of the Local Object Cache.

Serialized to ``.git/gitanchor/cache/<namespace>.json``. Both lookup
directions are stored explicitly so neither needs a scan.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ObjectCacheState(BaseModel):
    """Root cache document for one (repository, store namespace) pair."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    namespace: str = ""

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Mappings ─────────────────────────────────────────────────
    git_to_address: dict[str, str] = Field(default_factory=dict)
    address_to_git: dict[str, str] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()
