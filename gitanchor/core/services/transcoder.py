"""
Object Transcoder — git object graph ⇄ content-addressed DAG.

Encoding walks from the requested roots down to the first objects the
Local Object Cache already knows, then uploads the new objects in
post-order: blobs and other leaves first, each parent only once every
child has an address. Objects at the same height are independent, so
each height is uploaded through a bounded thread pool.

Decoding is the inverse: fetch nodes breadth-first (stopping at objects
already in the local database), then write them children-first so every
object git receives is already connected.

A cache hit short-circuits the whole subtree in both directions: a
content address never changes meaning and git objects are immutable.
"""

from __future__ import annotations

import binascii
import logging
import zlib
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Protocol

from gitanchor.core.errors import UnresolvedReferenceError
from gitanchor.core.models.nodes import ObjectNode, RefTableNode, parse_node
from gitanchor.core.models.objects import GitObject
from gitanchor.core.observability.metrics import MetricsRegistry
from gitanchor.core.persistence.object_cache import ObjectCache
from gitanchor.core.services.store import StoreAdapter

logger = logging.getLogger(__name__)


class ObjectDatabase(Protocol):
    """The slice of ``GitRepository`` the transcoder needs."""

    def read_object(self, oid: str) -> GitObject | None: ...

    def has_object(self, oid: str) -> bool: ...

    def write_object(self, obj: GitObject) -> str: ...


@dataclass
class EncodeResult:
    """Outcome of encoding a set of roots.

    ``addresses`` holds every root that encoded; ``failed`` every root whose
    graph reached an object missing from git; ``created`` the oid → address
    pairs uploaded by this call (cache hits excluded).
    """

    addresses: dict[str, str] = field(default_factory=dict)
    failed: dict[str, UnresolvedReferenceError] = field(default_factory=dict)
    created: dict[str, str] = field(default_factory=dict)


class Transcoder:
    """Encode/decode between one repository and one store, through one cache."""

    def __init__(
        self,
        repo: ObjectDatabase,
        store: StoreAdapter,
        cache: ObjectCache,
        workers: int = 8,
        metrics: MetricsRegistry | None = None,
    ):
        self._repo = repo
        self._store = store
        self._cache = cache
        self._workers = max(1, workers)
        self._metrics = metrics or MetricsRegistry()
        self._ref_tables: dict[str, RefTableNode] = {}

    @property
    def cache(self) -> ObjectCache:
        return self._cache

    # ═══════════════════════════════════════════════════════════════
    #  Encode
    # ═══════════════════════════════════════════════════════════════

    def encode(self, oid: str) -> str:
        """Encode the graph rooted at ``oid`` and return the root's address.

        Raises:
            UnresolvedReferenceError: An object reachable from ``oid`` is
                missing from the local object database.
        """
        result = self.encode_many([oid])
        if oid in result.failed:
            raise result.failed[oid]
        return result.addresses[oid]

    def encode_many(self, roots: Iterable[str]) -> EncodeResult:
        """Encode several roots together, sharing uploads between them.

        A root whose graph is incomplete lands in ``failed`` without
        affecting the others.
        """
        result = EncodeResult()
        pending: dict[str, list[str]] = {}     # oid → references still to encode

        for root in dict.fromkeys(roots):
            try:
                pending.update(self._walk_local(root, pending))
            except UnresolvedReferenceError as e:
                logger.warning("Cannot encode %s: %s", root, e)
                result.failed[root] = e

        try:
            for level in _levels(pending):
                self._upload_level(level, pending, result.created)
        except Exception:
            # Nothing from a half-finished upload may look "already encoded".
            self._cache.forget(result.created)
            raise

        for root in dict.fromkeys(roots):
            if root in result.failed:
                continue
            address = self._cache.address_for(root)
            assert address is not None, f"{root} was walked but not encoded"
            result.addresses[root] = address

        if result.created:
            logger.info("Encoded %d new object(s)", len(result.created))
        return result

    def _walk_local(self, root: str, known: dict[str, list[str]]) -> dict[str, list[str]]:
        """Collect the objects under ``root`` that still need encoding."""
        found: dict[str, list[str]] = {}
        stack = [root]
        while stack:
            oid = stack.pop()
            if oid in found or oid in known or self._cache.address_for(oid) is not None:
                continue
            obj = self._repo.read_object(oid)
            if obj is None:
                detail = "" if oid == root else f"reachable from {root}"
                raise UnresolvedReferenceError(oid, "git", detail)
            refs = obj.references()
            found[oid] = refs
            stack.extend(refs)
        return found

    def _upload_level(
        self,
        level: list[str],
        pending: dict[str, list[str]],
        created: dict[str, str],
    ) -> None:
        def upload(oid: str) -> tuple[str, str]:
            obj = self._repo.read_object(oid)
            if obj is None:
                raise UnresolvedReferenceError(oid, "git", "vanished during push")
            links = []
            for ref in pending[oid]:
                address = self._cache.address_for(ref)
                assert address is not None, f"child {ref} of {oid} has no address"
                links.append((ref, address))
            node = ObjectNode.from_object(obj, links)
            return oid, self._store.put(node.to_bytes())

        if len(level) == 1 or self._workers == 1:
            results = [upload(oid) for oid in level]
        else:
            with ThreadPoolExecutor(max_workers=min(self._workers, len(level))) as pool:
                results = list(pool.map(upload, level))

        for oid, address in results:
            self._cache.record(oid, address)
            created[oid] = address
        self._metrics.counter("transcoder.encoded").inc(len(results))

    # ═══════════════════════════════════════════════════════════════
    #  Decode
    # ═══════════════════════════════════════════════════════════════

    def decode(self, address: str, expected_oid: str | None = None) -> str:
        """Materialize the graph rooted at ``address`` into git; return its oid.

        Raises:
            UnresolvedReferenceError: A node is missing from (or corrupt in)
                the block store.
        """
        known = self._known_locally(address, expected_oid)
        if known is not None:
            return known

        nodes = self._fetch_graph(address)
        root = nodes[address]
        if expected_oid and root.oid != expected_oid:
            raise UnresolvedReferenceError(
                address, "store", f"node holds {root.oid}, expected {expected_oid}"
            )

        written = 0
        for node_address in _post_order(address, nodes):
            node = nodes[node_address]
            try:
                obj = node.to_object()
            except (binascii.Error, zlib.error) as e:
                raise UnresolvedReferenceError(node_address, "store", f"corrupt payload: {e}") from e
            oid = self._repo.write_object(obj)
            self._cache.record(oid, node_address)
            written += 1

        self._metrics.counter("transcoder.decoded").inc(written)
        logger.info("Fetched %d object(s) for %s", written, root.oid)
        return root.oid

    def _known_locally(self, address: str, oid: str | None) -> str | None:
        cached = self._cache.oid_for(address)
        if cached is not None and self._repo.has_object(cached):
            return cached
        if oid is not None and self._repo.has_object(oid):
            self._cache.record(oid, address)
            return oid
        return None

    def _fetch_graph(self, address: str) -> dict[str, ObjectNode]:
        """Fetch every node under ``address`` that git doesn't have yet."""
        nodes: dict[str, ObjectNode] = {}
        frontier = [address]
        while frontier:
            if len(frontier) == 1 or self._workers == 1:
                fetched = [self._fetch_node(a) for a in frontier]
            else:
                with ThreadPoolExecutor(max_workers=min(self._workers, len(frontier))) as pool:
                    fetched = list(pool.map(self._fetch_node, frontier))

            next_frontier: list[str] = []
            for node_address, node in zip(frontier, fetched):
                nodes[node_address] = node
                for child_oid, child_address in node.links:
                    if child_address in nodes or child_address in next_frontier:
                        continue
                    if self._known_locally(child_address, child_oid) is not None:
                        continue
                    next_frontier.append(child_address)
            frontier = [a for a in next_frontier if a not in nodes]
        return nodes

    def _fetch_node(self, address: str) -> ObjectNode:
        data = self._store.get(address)
        try:
            node = parse_node(data)
        except ValueError as e:
            raise UnresolvedReferenceError(address, "store", str(e)) from e
        if not isinstance(node, ObjectNode):
            raise UnresolvedReferenceError(address, "store", "expected a git object node")
        return node

    # ═══════════════════════════════════════════════════════════════
    #  Ref table
    # ═══════════════════════════════════════════════════════════════

    def put_ref_table(self, table: RefTableNode) -> str:
        address = self._store.put(table.to_bytes())
        self._ref_tables[address] = table
        return address

    def load_ref_table(self, address: str) -> RefTableNode:
        """Decode the root node of a remote (memoized per session)."""
        table = self._ref_tables.get(address)
        if table is not None:
            return table
        data = self._store.get(address)
        try:
            node = parse_node(data)
        except ValueError as e:
            raise UnresolvedReferenceError(address, "store", str(e)) from e
        if not isinstance(node, RefTableNode):
            raise UnresolvedReferenceError(address, "store", "expected a ref-table node")
        self._ref_tables[address] = node
        return node

    def known_ref_tables(self) -> list[RefTableNode]:
        """Ref tables decoded during this session, most recent last."""
        return list(self._ref_tables.values())


# ── Graph helpers ───────────────────────────────────────────────


def _levels(pending: dict[str, list[str]]) -> list[list[str]]:
    """Group pending objects by height (leaves first).

    Height counts only edges to other pending objects; anything already
    encoded is a leaf as far as this push is concerned.
    """
    height: dict[str, int] = {}
    for start in pending:
        if start in height:
            continue
        stack: list[tuple[str, bool]] = [(start, False)]
        while stack:
            oid, expanded = stack.pop()
            if oid in height:
                continue
            children = [c for c in pending[oid] if c in pending]
            if expanded:
                height[oid] = 1 + max((height[c] for c in children), default=-1)
                continue
            stack.append((oid, True))
            stack.extend((c, False) for c in children if c not in height)

    levels: dict[int, list[str]] = {}
    for oid, h in height.items():
        levels.setdefault(h, []).append(oid)
    return [levels[h] for h in sorted(levels)]


def _post_order(root: str, nodes: dict[str, ObjectNode]) -> list[str]:
    """Node addresses under ``root``, every child before its parents."""
    order: list[str] = []
    done: set[str] = set()
    stack: list[tuple[str, bool]] = [(root, False)]
    while stack:
        address, expanded = stack.pop()
        if address in done:
            continue
        if expanded:
            done.add(address)
            order.append(address)
            continue
        stack.append((address, True))
        for _, child in reversed(nodes[address].links):
            if child in nodes and child not in done:
                stack.append((child, False))
    return order
