"""
Push/Fetch Orchestrator — the consistency-bearing core.

Push, for one batch of refspecs:

    1. read the anchor and its ref table
    2. check every ref against the ledger (believed prior value, then
       fast-forward / tag rules); failures are per ref
    3. encode the new objects reachable from accepted refs
    4. pin them, build and pin the new ref table
    5. submit one CAS for the whole batch
    6. on CONFLICT re-read and go back to 2, a bounded number of times

Fetch reads the anchor and materializes each requested object graph
that is not already in the local database. Fetch never touches the
ledger's state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from gitanchor.adapters.vcs.git import GitRepository
from gitanchor.core.errors import (
    LedgerUnavailableError,
    SigningError,
    StoreUnavailableError,
    UnresolvedReferenceError,
)
from gitanchor.core.models.anchor import Anchor, SubmitStatus
from gitanchor.core.models.nodes import RefTableNode
from gitanchor.core.models.refs import FetchSpec, PushSpec, RefOutcome, is_null_oid
from gitanchor.core.observability.metrics import MetricsRegistry
from gitanchor.core.persistence.journal import JournalEntry, PushJournal
from gitanchor.core.services.ledger import LedgerClient
from gitanchor.core.services.signing import Signer
from gitanchor.core.services.store import StoreAdapter
from gitanchor.core.services.transcoder import Transcoder

logger = logging.getLogger(__name__)

DEFAULT_HEAD_CANDIDATES = ("refs/heads/main", "refs/heads/master")

# Per-ref rejection reasons, as git shows them
NON_FAST_FORWARD = "non-fast-forward"
FETCH_FIRST = "fetch first"
ALREADY_EXISTS = "already exists"
CONTENTION = "contention"


@dataclass
class PushOptions:
    """Session options that shape a push batch."""

    force: bool = False
    dry_run: bool = False
    cas: dict[str, str] = field(default_factory=dict)   # ref → believed oid ("" = absent)


@dataclass
class FetchResult:
    fetched: list[str] = field(default_factory=list)
    failed: dict[str, UnresolvedReferenceError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class _Candidate:
    """One push line while its batch is being resolved."""

    spec: PushSpec
    new_oid: str | None                 # None for deletes
    believed: str | None                # prior value we think the remote has
    explicit_lease: bool = False


class Orchestrator:
    """Push and fetch for one object set from one local repository."""

    def __init__(
        self,
        object_set_id: str,
        repo: GitRepository,
        transcoder: Transcoder,
        store: StoreAdapter,
        ledger: LedgerClient,
        signer_factory: Callable[[], Signer],
        *,
        remote: str = "",
        journal: PushJournal | None = None,
        max_cas_attempts: int = 3,
        workers: int = 8,
        metrics: MetricsRegistry | None = None,
    ):
        self.object_set_id = object_set_id
        self._repo = repo
        self._transcoder = transcoder
        self._store = store
        self._ledger = ledger
        self._signer_factory = signer_factory
        self._signer: Signer | None = None
        self._remote = remote
        self._journal = journal
        self._max_cas_attempts = max(1, max_cas_attempts)
        self._workers = workers
        self._metrics = metrics or MetricsRegistry()
        self._listed: dict[str, str] | None = None

    # ═══════════════════════════════════════════════════════════════
    #  List
    # ═══════════════════════════════════════════════════════════════

    def list_refs(self) -> RefTableNode:
        """Current ref table; remembered as the session's view of the remote."""
        anchor = self._ledger.read(self.object_set_id)
        table = self._load_table(anchor)
        self._listed = dict(table.refs)
        return table

    # ═══════════════════════════════════════════════════════════════
    #  Push
    # ═══════════════════════════════════════════════════════════════

    def push(self, specs: list[PushSpec], options: PushOptions | None = None) -> list[RefOutcome]:
        """Resolve one push batch; returns one outcome per spec, in order."""
        options = options or PushOptions()
        started = time.monotonic()
        entry = JournalEntry(
            object_set_id=self.object_set_id, remote=self._remote, dry_run=options.dry_run
        )
        outcomes: dict[str, RefOutcome] = {}

        candidates: list[_Candidate] = []
        for spec in specs:
            new_oid = None
            if not spec.is_delete:
                new_oid = self._repo.rev_parse(spec.src)
                if new_oid is None:
                    outcomes[spec.dst] = _reject(spec, f"src refspec {spec.src} does not match any")
                    continue
            candidates.append(_Candidate(spec=spec, new_oid=new_oid, believed=None))

        try:
            self._push_loop(candidates, options, outcomes, entry)
        except (StoreUnavailableError, LedgerUnavailableError) as e:
            logger.error("Push to %s failed: %s", self.object_set_id, e)
            reason = "ledger unavailable"
            if isinstance(e, StoreUnavailableError):
                reason = "store unavailable"
            for c in candidates:
                outcomes.setdefault(c.spec.dst, _reject(c.spec, reason))

        result = [outcomes[spec.dst] for spec in specs]
        self._write_journal(entry, result, started)
        return result

    def _push_loop(
        self,
        candidates: list[_Candidate],
        options: PushOptions,
        outcomes: dict[str, RefOutcome],
        entry: JournalEntry,
    ) -> None:
        anchor = self._ledger.read(self.object_set_id)
        table = self._load_table(anchor)
        entry.old_version = anchor.version

        for c in candidates:
            c.believed, c.explicit_lease = self._believed_prior(c.spec.dst, options, table)

        accepted = list(candidates)
        while True:
            entry.attempts += 1
            still: list[_Candidate] = []
            for c in accepted:
                reason = self._check(c, table, options.force)
                if reason:
                    logger.info("Rejecting %s: %s", c.spec.dst, reason)
                    outcomes[c.spec.dst] = _reject(c.spec, reason)
                else:
                    still.append(c)
            accepted = still
            if not accepted:
                return

            if options.dry_run:
                for c in accepted:
                    outcomes[c.spec.dst] = RefOutcome(dst=c.spec.dst, ok=True)
                return

            new_table = self._upload(accepted, table, outcomes, entry)
            accepted = [c for c in accepted if c.spec.dst not in outcomes]
            if not accepted:
                return

            if new_table.refs == table.refs and new_table.head == table.head:
                logger.info("Remote %s already up to date", self.object_set_id)
                for c in accepted:
                    outcomes[c.spec.dst] = RefOutcome(dst=c.spec.dst, ok=True)
                self._listed = dict(table.refs)
                return

            root = self._transcoder.put_ref_table(new_table)
            self._store.pin(root)

            try:
                signer = self._get_signer()
            except SigningError as e:
                logger.error("Cannot sign anchor update: %s", e)
                for c in accepted:
                    outcomes[c.spec.dst] = _reject(c.spec, "signing failed")
                return

            result = self._ledger.submit(
                self.object_set_id, anchor.version, root, new_table.digest(), signer
            )

            if result.status == SubmitStatus.CONFIRMED:
                assert result.anchor is not None
                entry.new_version = result.anchor.version
                entry.root = root
                for c in accepted:
                    outcomes[c.spec.dst] = RefOutcome(dst=c.spec.dst, ok=True)
                self._listed = dict(new_table.refs)
                return

            if result.status == SubmitStatus.FAILED:
                reason = "ledger unavailable" if result.retryable else "unauthorized"
                for c in accepted:
                    outcomes[c.spec.dst] = _reject(c.spec, reason)
                return

            # CONFLICT: someone else moved the anchor first
            self._metrics.counter("push.conflict").inc()
            if entry.attempts >= self._max_cas_attempts:
                logger.error(
                    "Giving up on %s after %d conflicting submissions",
                    self.object_set_id, entry.attempts,
                )
                for c in accepted:
                    outcomes[c.spec.dst] = _reject(c.spec, CONTENTION)
                return
            anchor = self._ledger.read(self.object_set_id)
            table = self._load_table(anchor)
            logger.info("Anchor moved to v%d, re-checking %d ref(s)", anchor.version, len(accepted))

    def _believed_prior(
        self, dst: str, options: PushOptions, table: RefTableNode
    ) -> tuple[str | None, bool]:
        if dst in options.cas:
            value = options.cas[dst]
            return (None if is_null_oid(value) else value), True
        if self._listed is not None:
            return self._listed.get(dst), False
        return table.refs.get(dst), False

    def _check(self, c: _Candidate, table: RefTableNode, force: bool) -> str:
        """Reason to reject ``c`` against ``table``, or "" to accept it."""
        spec = c.spec
        current = table.refs.get(spec.dst)
        forced = force or spec.force

        if current == c.new_oid:
            return ""
        if (c.explicit_lease or not forced) and c.believed != current:
            return NON_FAST_FORWARD
        if forced or spec.is_delete or current is None:
            return ""
        if spec.dst.startswith("refs/tags/"):
            return ALREADY_EXISTS
        if not self._repo.has_object(current):
            return FETCH_FIRST
        assert c.new_oid is not None
        if not self._repo.is_ancestor(current, c.new_oid):
            return NON_FAST_FORWARD
        return ""

    def _upload(
        self,
        accepted: list[_Candidate],
        table: RefTableNode,
        outcomes: dict[str, RefOutcome],
        entry: JournalEntry,
    ) -> RefTableNode:
        """Encode and pin everything the accepted refs need; build the new table."""
        roots = [c.new_oid for c in accepted if c.new_oid is not None]
        encoded = self._transcoder.encode_many(roots)
        for c in accepted:
            if c.new_oid in encoded.failed:
                missing = encoded.failed[c.new_oid].ref
                outcomes[c.spec.dst] = _reject(c.spec, f"unresolved reference {missing}")

        try:
            self._store.pin_all(encoded.created.values(), workers=self._workers)
        except StoreUnavailableError:
            # Unpinned blocks must be re-uploaded and re-pinned next time
            self._transcoder.cache.forget(encoded.created)
            raise
        entry.objects_uploaded += len(encoded.created)

        refs = dict(table.refs)
        objects = dict(table.objects)
        for c in accepted:
            if c.spec.dst in outcomes:
                continue
            if c.new_oid is None:
                refs.pop(c.spec.dst, None)
            else:
                refs[c.spec.dst] = c.new_oid
                objects[c.new_oid] = encoded.addresses[c.new_oid]

        live = set(refs.values())
        objects = {oid: address for oid, address in objects.items() if oid in live}
        head = table.head if table.head in refs else _pick_head(refs, accepted)
        return RefTableNode(refs=refs, head=head, objects=objects)

    def _get_signer(self) -> Signer:
        if self._signer is None:
            self._signer = self._signer_factory()
        return self._signer

    # ═══════════════════════════════════════════════════════════════
    #  Fetch
    # ═══════════════════════════════════════════════════════════════

    def fetch(self, specs: list[FetchSpec]) -> FetchResult:
        """Materialize every requested object the local database lacks.

        A ref whose graph can't be resolved is recorded in the result and
        the rest of the batch continues.
        """
        result = FetchResult()
        missing: dict[str, FetchSpec] = {}
        for spec in specs:
            if spec.oid not in missing and not self._repo.has_object(spec.oid):
                missing[spec.oid] = spec
        if not missing:
            logger.debug("Fetch: everything already present locally")
            return result

        anchor = self._ledger.read(self.object_set_id)
        table = self._load_table(anchor)

        for oid, spec in missing.items():
            try:
                address = self._address_for(oid, table)
                self._transcoder.decode(address, expected_oid=oid)
            except UnresolvedReferenceError as e:
                logger.error("Cannot fetch %s (%s): %s", spec.name, oid, e)
                result.failed[spec.name] = e
                continue
            result.fetched.append(oid)
        return result

    def _address_for(self, oid: str, table: RefTableNode) -> str:
        cached = self._transcoder.cache.address_for(oid)
        if cached is not None:
            return cached
        if oid in table.objects:
            return table.objects[oid]
        for earlier in reversed(self._transcoder.known_ref_tables()):
            if oid in earlier.objects:
                return earlier.objects[oid]
        raise UnresolvedReferenceError(oid, "store", "not advertised by the remote")

    # ── Helpers ─────────────────────────────────────────────────

    def _load_table(self, anchor: Anchor) -> RefTableNode:
        if anchor.root is None:
            return RefTableNode()
        table = self._transcoder.load_ref_table(anchor.root)
        if table.digest() != anchor.refs_digest:
            raise UnresolvedReferenceError(
                anchor.root, "store", "ref table does not match the anchor's digest"
            )
        return table

    def _write_journal(
        self, entry: JournalEntry, outcomes: list[RefOutcome], started: float
    ) -> None:
        if self._journal is None:
            return
        entry.refs = [o.model_dump() for o in outcomes]
        ok = sum(1 for o in outcomes if o.ok)
        entry.status = "ok" if ok == len(outcomes) else ("failed" if ok == 0 else "partial")
        entry.duration_ms = int((time.monotonic() - started) * 1000)
        self._journal.write(entry)


def _reject(spec: PushSpec, reason: str) -> RefOutcome:
    return RefOutcome(dst=spec.dst, ok=False, reason=reason)


def _pick_head(refs: dict[str, str], accepted: list[_Candidate]) -> str | None:
    """Symbolic HEAD for a remote that has none (or lost its target)."""
    for candidate in DEFAULT_HEAD_CANDIDATES:
        if candidate in refs:
            return candidate
    for c in accepted:
        if c.spec.dst.startswith("refs/heads/") and c.spec.dst in refs:
            return c.spec.dst
    branches = sorted(r for r in refs if r.startswith("refs/heads/"))
    return branches[0] if branches else None
