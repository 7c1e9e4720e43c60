"""
Ref command models — one push or fetch request and its per-ref outcome.
"""

from __future__ import annotations

from pydantic import BaseModel

from gitanchor.core.errors import ProtocolError

class PushSpec(BaseModel):
    """One ``push [+]<src>:<dst>`` line.

    An empty ``src`` deletes ``dst``.
    """

    src: str
    dst: str
    force: bool = False

    @property
    def is_delete(self) -> bool:
        return self.src == ""

    @classmethod
    def parse(cls, refspec: str) -> PushSpec:
        force = refspec.startswith("+")
        if force:
            refspec = refspec[1:]
        src, sep, dst = refspec.partition(":")
        if not sep or not dst:
            raise ProtocolError(f"malformed push refspec: {refspec!r}")
        return cls(src=src, dst=dst, force=force)


class FetchSpec(BaseModel):
    """One ``fetch <oid> <name>`` line."""

    oid: str
    name: str


class RefOutcome(BaseModel):
    """Per-ref result line for a push batch."""

    dst: str
    ok: bool
    reason: str = ""

    def to_line(self) -> str:
        if self.ok:
            return f"ok {self.dst}"
        return f"error {self.dst} {self.reason}".rstrip()


def is_null_oid(oid: str | None) -> bool:
    """True for None, empty, or git's all-zero hash."""
    return not oid or oid.strip("0") == ""
