"""
gitanchor — entry points.

    git-remote-anchor <remote> [<url>]     run by git for anchor:// remotes
    gitanchor cache stats|clear            local object cache
    gitanchor anchor show <id>             what the ledger says
    gitanchor journal                      recent push outcomes
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

import click

from gitanchor import __version__
from gitanchor.core.errors import GitAnchorError
from gitanchor.core.observability.logging_config import apply_verbosity, setup_logging

logger = logging.getLogger(__name__)


def _setup_logging_from_env(level: str | None = None) -> None:
    setup_logging(
        level=level or os.environ.get("GITANCHOR_LOG_LEVEL", "WARNING"),
        log_file=os.environ.get("GITANCHOR_LOG_FILE"),
        log_file_level=os.environ.get("GITANCHOR_LOG_FILE_LEVEL"),
        quiet_third_party=level != "DEBUG",
    )


def _on_verbosity(verbosity: int) -> None:
    # 1 is git's default; keep whatever GITANCHOR_LOG_LEVEL chose
    if verbosity != 1:
        apply_verbosity(verbosity)


# ═══════════════════════════════════════════════════════════════════
#  git-remote-anchor
# ═══════════════════════════════════════════════════════════════════


@click.command(name="git-remote-anchor")
@click.version_option(version=__version__, prog_name="git-remote-anchor")
@click.argument("remote")
@click.argument("url", required=False)
@click.pass_context
def helper(ctx: click.Context, remote: str, url: str | None) -> None:
    """Remote helper for anchor://<object-set-id> URLs (started by git)."""
    from gitanchor.adapters.vcs.git import GitRepository
    from gitanchor.core.observability.metrics import MetricsRegistry
    from gitanchor.core.protocol.session import ProtocolSession
    from gitanchor.core.use_cases.remote import open_remote

    ctx.ensure_object(dict)
    _setup_logging_from_env()

    metrics = MetricsRegistry()
    repo = GitRepository(ctx.obj.get("repo_path"))
    try:
        remote_ctx = open_remote(
            url or remote,
            repo,
            remote_name=remote,
            config=ctx.obj.get("config"),
            registry=ctx.obj.get("registry"),
            signer=ctx.obj.get("signer"),
            metrics=metrics,
        )
    except GitAnchorError as e:
        logger.error("%s", e)
        repo.close()
        sys.exit(1)

    session = ProtocolSession(
        remote_ctx.orchestrator,
        click.get_text_stream("stdin", encoding="utf-8"),
        click.get_text_stream("stdout", encoding="utf-8"),
        on_verbosity=_on_verbosity,
    )
    try:
        status = session.run()
    except GitAnchorError as e:
        logger.error("%s", e)
        status = 1
    finally:
        remote_ctx.close()
        logger.debug("Session metrics: %s", metrics.summary())

    sys.exit(status)


# ═══════════════════════════════════════════════════════════════════
#  gitanchor (admin)
# ═══════════════════════════════════════════════════════════════════


@click.group()
@click.version_option(version=__version__, prog_name="gitanchor")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--git-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Repository git dir (default: discovered from the current directory).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool, git_dir: Path | None) -> None:
    """Inspect and maintain gitanchor state."""
    ctx.ensure_object(dict)
    ctx.obj["git_dir"] = git_dir

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    else:
        level = None
    _setup_logging_from_env(level)


def _git_dir(ctx: click.Context) -> Path:
    if ctx.obj.get("git_dir"):
        return Path(ctx.obj["git_dir"])
    from gitanchor.adapters.vcs.git import GitRepository

    try:
        with GitRepository() as repo:
            return repo.git_dir
    except GitAnchorError as e:
        click.secho(f"❌ Not inside a git repository: {e}", fg="red", err=True)
        sys.exit(1)


# ── cache ───────────────────────────────────────────────────────


@cli.group()
def cache() -> None:
    """Local object cache (git oid ↔ content address)."""


@cache.command("stats")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def cache_stats(ctx: click.Context, as_json: bool) -> None:
    """Show cached mappings per store namespace."""
    from gitanchor.core.use_cases.admin import cache_stats as get_stats

    stats = get_stats(_git_dir(ctx))
    if as_json:
        click.echo(json.dumps(stats, indent=2))
        return
    if not stats:
        click.echo("No object cache in this repository.")
        return
    for s in stats:
        click.secho(f"📦 {s['namespace'] or '(unnamed)'}", fg="cyan", bold=True)
        click.echo(f"   Entries: {s['entries']}")
        click.echo(f"   Updated: {s['updated_at'] or '-'}")
        click.echo(f"   File:    {s['path']}")


@cache.command("clear")
@click.option("--namespace", default=None, help="Only clear this store namespace.")
@click.pass_context
def cache_clear(ctx: click.Context, namespace: str | None) -> None:
    """Forget every cached mapping (objects are re-checked on next push)."""
    from gitanchor.core.use_cases.admin import clear_cache

    cleared = clear_cache(_git_dir(ctx), namespace=namespace)
    if cleared:
        click.secho(f"✅ Cleared {cleared} cache file(s)", fg="green")
    else:
        click.echo("Nothing to clear.")


# ── anchor ──────────────────────────────────────────────────────


@cli.group()
def anchor() -> None:
    """Ledger anchors."""


@anchor.command("show")
@click.argument("target")
@click.option("--refs", "with_refs", is_flag=True, help="Also decode the ref table.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def anchor_show(ctx: click.Context, target: str, with_refs: bool, as_json: bool) -> None:
    """Show the anchor of TARGET (anchor://<id> or a bare id)."""
    from gitanchor.core.use_cases.admin import show_anchor

    try:
        view = show_anchor(
            target,
            with_refs=with_refs,
            config=ctx.obj.get("config"),
            registry=ctx.obj.get("registry"),
        )
    except GitAnchorError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(view.to_dict(), indent=2))
        return

    a = view.anchor
    click.secho(f"⚓ {a.object_set_id}", fg="cyan", bold=True)
    if a.is_empty:
        click.echo("   (never pushed)")
        return
    click.echo(f"   Version: {a.version}")
    click.echo(f"   Root:    {a.root}")
    click.echo(f"   Updated: {a.updated_at or '-'}")
    if view.table is not None:
        click.echo()
        for name, oid in sorted(view.table.refs.items()):
            marker = " ← HEAD" if name == view.table.head else ""
            click.echo(f"   {oid} {name}{marker}")
    if view.error:
        click.secho(f"   ⚠️  {view.error}", fg="yellow")


# ── journal ─────────────────────────────────────────────────────


@cli.command()
@click.option("-n", "count", default=20, show_default=True, help="Number of entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def journal(ctx: click.Context, count: int, as_json: bool) -> None:
    """Recent push batches and what the ledger answered."""
    from gitanchor.core.use_cases.admin import recent_pushes

    entries = recent_pushes(_git_dir(ctx), count)
    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return
    if not entries:
        click.echo("No pushes recorded.")
        return

    colors = {"ok": "green", "partial": "yellow", "failed": "red"}
    for e in entries:
        label = "dry-run" if e.dry_run else e.status
        click.secho(f"{e.timestamp}  {e.object_set_id}  ", nl=False)
        click.secho(label, fg=colors.get(e.status, "white"), nl=False)
        if e.new_version is not None:
            click.echo(f"  v{e.old_version} → v{e.new_version}", nl=False)
        click.echo()
        for ref in e.refs:
            mark = "✓" if ref.get("ok") else "✗"
            reason = f" ({ref['reason']})" if ref.get("reason") else ""
            click.echo(f"     {mark} {ref['dst']}{reason}")


if __name__ == "__main__":
    helper()
