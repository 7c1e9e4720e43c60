"""
Tests for the remote-helper protocol — command parsing and the session loop.

The session runs against a fake orchestrator so every byte written to
stdout can be asserted exactly.
"""

import io

import pytest

from gitanchor.core.engine.orchestrator import FetchResult, PushOptions
from gitanchor.core.errors import ProtocolError, UnresolvedReferenceError
from gitanchor.core.models.nodes import RefTableNode
from gitanchor.core.models.refs import FetchSpec, PushSpec, RefOutcome
from gitanchor.core.protocol.commands import CommandKind, parse_command
from gitanchor.core.protocol.session import ProtocolSession, SessionState

A = "a" * 40
B = "b" * 40


class FakeOrchestrator:
    def __init__(self, table: RefTableNode | None = None):
        self.table = table or RefTableNode()
        self.pushes: list[tuple[list[PushSpec], PushOptions]] = []
        self.fetches: list[list[FetchSpec]] = []
        self.fail_fetch: set[str] = set()

    def list_refs(self) -> RefTableNode:
        return self.table

    def push(self, specs, options):
        self.pushes.append((list(specs), PushOptions(options.force, options.dry_run, dict(options.cas))))
        return [
            RefOutcome(dst=s.dst, ok=not s.dst.endswith("/bad"), reason="non-fast-forward")
            for s in specs
        ]

    def fetch(self, specs):
        self.fetches.append(list(specs))
        result = FetchResult()
        for s in specs:
            if s.name in self.fail_fetch:
                result.failed[s.name] = UnresolvedReferenceError(s.oid, "store")
            else:
                result.fetched.append(s.oid)
        return result


def _run(text: str, orchestrator=None, **kwargs):
    orchestrator = orchestrator or FakeOrchestrator()
    out = io.StringIO()
    session = ProtocolSession(orchestrator, io.StringIO(text), out, **kwargs)
    status = session.run()
    return status, out.getvalue(), session


# ── Parsing ──────────────────────────────────────────────────────────


class TestParseCommand:
    def test_blank(self):
        assert parse_command("\n").kind == CommandKind.BLANK
        assert parse_command("").kind == CommandKind.BLANK

    def test_capabilities(self):
        assert parse_command("capabilities\n").kind == CommandKind.CAPABILITIES

    def test_list(self):
        assert parse_command("list").for_push is False
        cmd = parse_command("list for-push\r\n")
        assert cmd.kind == CommandKind.LIST
        assert cmd.for_push is True

    def test_option(self):
        cmd = parse_command("option cas refs/heads/main:abc def")
        assert cmd.option == ("cas", "refs/heads/main:abc def")

    def test_push(self):
        cmd = parse_command("push +refs/heads/a:refs/heads/b")
        assert cmd.batched
        assert cmd.push == PushSpec(src="refs/heads/a", dst="refs/heads/b", force=True)

    def test_push_delete(self):
        assert parse_command("push :refs/heads/gone").push.is_delete

    def test_fetch(self):
        cmd = parse_command(f"fetch {A} refs/heads/main")
        assert cmd.fetch == FetchSpec(oid=A, name="refs/heads/main")

    @pytest.mark.parametrize(
        "line",
        [
            "bogus",
            "capabilities now",
            "list everything",
            "option verbosity",
            "push",
            "push refs/heads/a",
            f"fetch {A}",
            "connect git-upload-pack",
        ],
    )
    def test_malformed(self, line):
        with pytest.raises(ProtocolError):
            parse_command(line)


# ── Immediate commands ───────────────────────────────────────────────


class TestSession:
    def test_capabilities(self):
        status, out, session = _run("capabilities\n\n")
        assert status == 0
        assert out == "fetch\npush\noption\n\n"
        assert session.state == SessionState.IDLE

    def test_end_of_input_ends_session(self):
        status, out, _ = _run("capabilities\n")
        assert status == 0
        assert out.endswith("option\n\n")

    def test_list_with_head(self):
        table = RefTableNode(
            refs={"refs/heads/main": A, "refs/heads/dev": B},
            head="refs/heads/main",
        )
        _, out, _ = _run("list\n\n", FakeOrchestrator(table))
        assert out == f"{B} refs/heads/dev\n{A} refs/heads/main\n@refs/heads/main HEAD\n\n"

    def test_list_empty(self):
        _, out, _ = _run("list for-push\n\n")
        assert out == "\n"

    def test_list_dangling_head(self):
        table = RefTableNode(refs={"refs/heads/dev": B}, head="refs/heads/main")
        _, out, _ = _run("list\n\n", FakeOrchestrator(table))
        assert "HEAD" not in out

    def test_stops_after_blank_line(self):
        fake = FakeOrchestrator()
        _, out, _ = _run("capabilities\n\nlist\n\n", fake)
        assert out == "fetch\npush\noption\n\n"

    def test_malformed_is_fatal(self):
        with pytest.raises(ProtocolError):
            _run("hello\n")


class TestOptions:
    def test_verbosity(self):
        levels = []
        _, out, _ = _run("option verbosity 2\n\n", on_verbosity=levels.append)
        assert out == "ok\n"
        assert levels == [2]

    def test_bad_verbosity(self):
        _, out, _ = _run("option verbosity loud\n\n")
        assert out.startswith("error ")

    @pytest.mark.parametrize(
        "value, expected", [("true", True), ("1", True), ("false", False), ("0", False)]
    )
    def test_flags(self, value, expected):
        _, out, session = _run(
            f"option dry-run {value}\noption force {value}\noption progress {value}\n\n"
        )
        assert out == "ok\nok\nok\n"
        assert session.options.dry_run is expected
        assert session.options.force is expected
        assert session.progress is expected

    def test_bad_flag(self):
        _, out, _ = _run("option force maybe\n\n")
        assert out == "error invalid value for force\n"

    def test_cas(self):
        _, out, session = _run(f"option cas refs/heads/main:{A}\n\n")
        assert out == "ok\n"
        assert session.options.cas == {"refs/heads/main": A}

    def test_cas_quoted(self):
        _, _, session = _run(f'option cas "refs/heads/main:{A}"\n\n')
        assert session.options.cas == {"refs/heads/main": A}

    def test_cas_needs_colon(self):
        _, out, _ = _run("option cas refs/heads/main\n\n")
        assert out.startswith("error ")

    def test_unsupported(self):
        _, out, _ = _run("option depth 1\n\n")
        assert out == "unsupported\n"

    def test_options_reach_push(self):
        fake = FakeOrchestrator()
        _run(
            "option dry-run true\n"
            f"option cas refs/heads/main:{A}\n"
            "push refs/heads/main:refs/heads/main\n\n\n",
            fake,
        )
        (_, options), = fake.pushes
        assert options.dry_run is True
        assert options.cas == {"refs/heads/main": A}


# ── Batches ──────────────────────────────────────────────────────────


class TestBatches:
    def test_push_batch(self):
        fake = FakeOrchestrator()
        status, out, _ = _run(
            "push refs/heads/main:refs/heads/main\n"
            "push +refs/heads/x:refs/heads/bad\n"
            "\n\n",
            fake,
        )
        assert status == 0
        assert out == "ok refs/heads/main\nerror refs/heads/bad non-fast-forward\n\n"
        specs, _ = fake.pushes[0]
        assert [s.dst for s in specs] == ["refs/heads/main", "refs/heads/bad"]
        assert len(fake.pushes) == 1

    def test_two_push_batches(self):
        fake = FakeOrchestrator()
        _run(
            "push refs/heads/a:refs/heads/a\n\n"
            "push refs/heads/b:refs/heads/b\n\n\n",
            fake,
        )
        assert len(fake.pushes) == 2

    def test_fetch_batch(self):
        fake = FakeOrchestrator()
        status, out, _ = _run(f"fetch {A} refs/heads/main\nfetch {B} refs/heads/dev\n\n\n", fake)
        assert status == 0
        assert out == "\n"
        assert [s.oid for s in fake.fetches[0]] == [A, B]

    def test_failed_fetch_exits_nonzero(self):
        fake = FakeOrchestrator()
        fake.fail_fetch.add("refs/heads/dev")
        status, out, _ = _run(f"fetch {A} refs/heads/main\nfetch {B} refs/heads/dev\n\n\n", fake)
        assert status == 1
        assert out == "\n"

    def test_eof_mid_batch(self):
        fake = FakeOrchestrator()
        with pytest.raises(ProtocolError, match="pending"):
            _run("push refs/heads/a:refs/heads/a\n", fake)
        assert fake.pushes == []

    def test_mixed_batch(self):
        with pytest.raises(ProtocolError):
            _run(f"push refs/heads/a:refs/heads/a\nfetch {A} refs/heads/a\n\n")

    def test_list_inside_batch(self):
        with pytest.raises(ProtocolError):
            _run("push refs/heads/a:refs/heads/a\nlist\n\n")

    def test_state_returns_to_awaiting(self):
        fake = FakeOrchestrator()
        seen = []
        original = fake.push

        def push(specs, options):
            seen.append(session.state)
            return original(specs, options)

        fake.push = push
        out = io.StringIO()
        session = ProtocolSession(fake, io.StringIO("push refs/heads/a:refs/heads/a\n\n\n"), out)
        session.run()
        assert seen == [SessionState.DISPATCHING_BATCH]
        assert session.state == SessionState.IDLE
