"""
Domain models — Pydantic types for the remote helper.

All models are re-exported here for convenient access:

    from gitanchor.core.models import Anchor, ObjectNode, RefTableNode, PushSpec
"""

from gitanchor.core.models.anchor import (
    Anchor,
    PendingTransaction,
    SignedTransaction,
    SubmitResult,
    SubmitStatus,
)
from gitanchor.core.models.cache import ObjectCacheState
from gitanchor.core.models.nodes import ObjectNode, RefTableNode, parse_node
from gitanchor.core.models.objects import GitObject, TreeEntry
from gitanchor.core.models.refs import FetchSpec, PushSpec, RefOutcome

__all__ = [
    # anchor.py
    "Anchor",
    # refs.py
    "FetchSpec",
    # objects.py
    "GitObject",
    # cache.py
    "ObjectCacheState",
    # nodes.py
    "ObjectNode",
    "PendingTransaction",
    "PushSpec",
    "RefOutcome",
    "RefTableNode",
    "SignedTransaction",
    "SubmitResult",
    "SubmitStatus",
    "TreeEntry",
    "parse_node",
]
