"""
Tests for the entry points — the git-remote-anchor helper driven through
its stdin/stdout, and the gitanchor admin commands.
"""

import json

import pytest
from click.testing import CliRunner

from gitanchor.adapters.ledger.memory import MemoryLedger
from gitanchor.adapters.registry import BackendRegistry
from gitanchor.adapters.store.memory import MemoryBlockStore
from gitanchor.core.config.loader import HelperConfig, LedgerConfig, RetryConfig, StoreConfig
from gitanchor.core.services.signing import Signer
from gitanchor.main import cli, helper

PUSH_MASTER = (
    "capabilities\n"
    "list for-push\n"
    "push refs/heads/master:refs/heads/master\n"
    "\n"
    "\n"
)


@pytest.fixture
def backends():
    store = MemoryBlockStore()
    ledger = MemoryLedger()
    registry = BackendRegistry()
    registry.use_store("memory", store)
    registry.use_ledger("memory", ledger)
    config = HelperConfig(
        store=StoreConfig(backend="memory"),
        ledger=LedgerConfig(backend="memory"),
        retry=RetryConfig(max_attempts=2, base_delay=0, max_delay=0),
    )
    return {"registry": registry, "config": config, "store": store, "ledger": ledger}


@pytest.fixture
def run_helper(backends):
    signer = Signer.generate()

    def run(repo, text: str, url: str = "anchor://cli-set"):
        obj = {
            "repo_path": repo.path,
            "config": backends["config"],
            "registry": backends["registry"],
            "signer": signer,
        }
        return CliRunner().invoke(helper, ["origin", url], input=text, obj=obj)

    return run


class TestHelper:
    def test_first_push(self, git_repo, run_helper, backends):
        result = run_helper(git_repo, PUSH_MASTER)

        assert result.exit_code == 0, result.output
        assert result.stdout == "fetch\npush\noption\n\n\nok refs/heads/master\n\n"
        assert backends["ledger"].read("cli-set").version == 1

    def test_list_after_push(self, git_repo, run_helper):
        run_helper(git_repo, PUSH_MASTER)
        head = git_repo.rev("HEAD")

        result = run_helper(git_repo, "list\n\n")
        assert result.stdout == f"{head} refs/heads/master\n@refs/heads/master HEAD\n\n"

    def test_clone_through_helper(self, git_repo, repo_factory, run_helper):
        run_helper(git_repo, PUSH_MASTER)
        head = git_repo.rev("HEAD")
        dest = repo_factory("dest")

        result = run_helper(dest, f"list\nfetch {head} refs/heads/master\n\n\n")
        assert result.exit_code == 0, result.output
        assert dest.reachable(head) == git_repo.reachable(head)

    def test_cache_persisted(self, git_repo, run_helper, backends):
        run_helper(git_repo, PUSH_MASTER)
        backends["store"].reset_calls()

        git_repo.commit({"b.txt": "b\n"}, "second")
        run_helper(git_repo, "push refs/heads/master:refs/heads/master\n\n\n")
        # blob, tree, commit and the ref table; nothing from the first push
        assert backends["store"].call_count("put") == 4

    def test_rejection_is_in_band(self, git_repo, run_helper):
        run_helper(git_repo, PUSH_MASTER)
        result = run_helper(git_repo, "push refs/heads/nope:refs/heads/x\n\n\n")

        assert result.exit_code == 0
        assert result.stdout == "error refs/heads/x src refspec refs/heads/nope does not match any\n\n"

    def test_bad_url(self, git_repo, run_helper):
        result = run_helper(git_repo, "capabilities\n\n", url="https://example.com/repo")
        assert result.exit_code == 1
        assert result.stdout == ""

    def test_protocol_error_exits_nonzero(self, git_repo, run_helper):
        result = run_helper(git_repo, "push refs/heads/master:refs/heads/master\n")
        assert result.exit_code == 1

    def test_failed_fetch_exits_nonzero(self, git_repo, repo_factory, run_helper):
        run_helper(git_repo, PUSH_MASTER)
        result = run_helper(repo_factory("dest"), f"fetch {'3' * 40} refs/heads/ghost\n\n\n")
        assert result.exit_code == 1


class TestAdmin:
    def _obj(self, backends):
        return {"config": backends["config"], "registry": backends["registry"]}

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_anchor_show_never_pushed(self, backends):
        result = CliRunner().invoke(cli, ["anchor", "show", "fresh"], obj=self._obj(backends))
        assert result.exit_code == 0
        assert "never pushed" in result.output

    def test_anchor_show_json(self, git_repo, run_helper, backends):
        run_helper(git_repo, PUSH_MASTER)
        result = CliRunner().invoke(
            cli,
            ["anchor", "show", "anchor://cli-set", "--refs", "--json"],
            obj=self._obj(backends),
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["anchor"]["version"] == 1
        assert data["refs"] == {"refs/heads/master": git_repo.rev("HEAD")}
        assert data["head"] == "refs/heads/master"

    def test_anchor_show_human(self, git_repo, run_helper, backends):
        run_helper(git_repo, PUSH_MASTER)
        result = CliRunner().invoke(cli, ["anchor", "show", "cli-set", "--refs"], obj=self._obj(backends))
        assert "Version: 1" in result.output
        assert "← HEAD" in result.output

    def test_anchor_show_missing_table(self, git_repo, run_helper, backends):
        run_helper(git_repo, PUSH_MASTER)
        backends["store"].drop(backends["ledger"].read("cli-set").root)
        result = CliRunner().invoke(
            cli, ["anchor", "show", "cli-set", "--refs", "--json"], obj=self._obj(backends)
        )
        assert result.exit_code == 0
        assert "error" in json.loads(result.output)

    def test_cache_stats_and_clear(self, git_repo, run_helper):
        run_helper(git_repo, PUSH_MASTER)
        runner = CliRunner()
        git_dir = str(git_repo.git_dir)

        result = runner.invoke(cli, ["--git-dir", git_dir, "cache", "stats", "--json"])
        (stats,) = json.loads(result.output)
        assert stats["namespace"] == "memory"
        assert stats["entries"] == 3

        result = runner.invoke(cli, ["--git-dir", git_dir, "cache", "clear"])
        assert "Cleared 1" in result.output
        result = runner.invoke(cli, ["--git-dir", git_dir, "cache", "stats", "--json"])
        assert json.loads(result.output)[0]["entries"] == 0

    def test_cache_clear_other_namespace(self, git_repo, run_helper):
        run_helper(git_repo, PUSH_MASTER)
        result = CliRunner().invoke(
            cli, ["--git-dir", str(git_repo.git_dir), "cache", "clear", "--namespace", "ipfs"]
        )
        assert "Nothing to clear" in result.output

    def test_empty_cache(self, git_repo):
        result = CliRunner().invoke(cli, ["--git-dir", str(git_repo.git_dir), "cache", "stats"])
        assert "No object cache" in result.output

    def test_journal(self, git_repo, run_helper):
        run_helper(git_repo, PUSH_MASTER)
        run_helper(git_repo, "push refs/heads/nope:refs/heads/x\n\n\n")
        git_dir = str(git_repo.git_dir)

        result = CliRunner().invoke(cli, ["--git-dir", git_dir, "journal", "--json"])
        entries = json.loads(result.output)
        assert [e["status"] for e in entries] == ["ok", "failed"]
        assert entries[0]["remote"] == "origin"

        result = CliRunner().invoke(cli, ["--git-dir", git_dir, "journal", "-n", "1"])
        assert "refs/heads/x (src refspec" in result.output
        assert "refs/heads/master" not in result.output
