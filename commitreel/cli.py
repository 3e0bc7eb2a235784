"""CLI entry point: commitreel.

Subcommands:
    commitreel ingest owner/repo -o repo.log     # Build a Gource log
    commitreel repos                             # Repositories visible to the token
    commitreel cache list                        # Cached repositories
    commitreel cache invalidate owner/repo       # Drop one cached entry
    commitreel cache clear                       # Drop everything
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone

import click
import structlog
from sqlalchemy.exc import SQLAlchemyError

from commitreel.core.config import Settings
from commitreel.core.database import create_session_factory
from commitreel.core.github import RepositoryId, parse_repository_id
from commitreel.core.logging import setup_logging
from commitreel.core.session import AppSession
from commitreel.dao.cache_dao import CacheDAO
from commitreel.engines.history.account import filter_repos, list_user_repos
from commitreel.engines.history.github_client import GitHubClient
from commitreel.engines.history.sink import FileLogSink, LogSink, StreamLogSink
from commitreel.engines.history.walker import CommitHistoryWalker, Strategy
from commitreel.exceptions import CacheError, CommitReelError
from commitreel.services.repository_cache import RepositoryCache

log = structlog.get_logger("commitreel.cli")


def _open_cache(settings: Settings) -> RepositoryCache:
    """Open the cache store. Raises CacheError when it cannot be created or read."""
    try:
        factory = create_session_factory(settings.cache_url)
    except (SQLAlchemyError, OSError) as exc:
        raise CacheError(f"cannot open cache at {settings.cache_url}: {exc}") from exc
    dao = CacheDAO(
        factory,
        max_entries=settings.cache_max_entries,
        max_bytes=settings.cache_max_bytes,
    )
    return RepositoryCache(dao)


def _cache_or_exit(settings: Settings) -> RepositoryCache:
    try:
        return _open_cache(settings)
    except CacheError as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)


def _repository(value: str) -> RepositoryId:
    try:
        return parse_repository_id(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _format_time(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """commitreel: repository history to a Gource change log."""
    setup_logging("DEBUG" if verbose else None)
    ctx.obj = AppSession.from_env()


@main.command()
@click.argument("repository")
@click.option(
    "-s",
    "--strategy",
    type=click.Choice([s.value for s in Strategy]),
    default=Strategy.REST.value,
    show_default=True,
    help="How to acquire history",
)
@click.option("-o", "--output", default="-", help="Log file path ('-' for stdout)")
@click.option("--refresh", is_flag=True, help="Ignore and replace the cached result")
@click.option("--no-cache", is_flag=True, help="Neither read nor write the cache")
@click.option("--token", envvar="GITHUB_TOKEN", default=None, help="GitHub token")
@click.option("--concurrency", type=int, default=None, help="Parallel detail requests")
@click.option("--depth", type=int, default=None, help="Clone / history depth bound")
@click.pass_obj
def ingest(
    session: AppSession,
    repository: str,
    strategy: str,
    output: str,
    refresh: bool,
    no_cache: bool,
    token: str | None,
    concurrency: int | None,
    depth: int | None,
) -> None:
    """Build the change log for REPOSITORY (owner/name or GitHub URL)."""
    identity = _repository(repository)
    if token:
        session.login(token)
    settings = session.settings.with_overrides(concurrency=concurrency, clone_depth=depth)
    if settings.concurrency <= 0:
        raise click.BadParameter("must be positive", param_hint="--concurrency")

    sink: LogSink = StreamLogSink(sys.stdout) if output == "-" else FileLogSink(output)
    cache = None
    if not no_cache:
        try:
            cache = _open_cache(settings)
        except CacheError as exc:
            log.warning("cli.cache_unavailable", error=str(exc))

    async def _run():
        async with GitHubClient.from_session(session) as client:
            walker = CommitHistoryWalker(
                client,
                cache,
                concurrency=settings.concurrency,
                depth=settings.clone_depth,
                cache_ttl=settings.cache_ttl,
                clone_url=settings.clone_url,
                token=session.token,
            )
            return await walker.ingest_into(identity, sink, Strategy(strategy), refresh=refresh)

    try:
        result = asyncio.run(_run())
    except CommitReelError as exc:
        click.echo(f"Failed to ingest {identity}: {exc}", err=True)
        sys.exit(1)

    source = "cache" if result.from_cache else ("incremental" if result.incremental else "full")
    click.echo(
        f"{identity}: {len(result.events)} events ({source})"
        + (f", {len(result.failed_commits)} commits failed" if result.failed_commits else "")
        + (", history truncated" if result.truncated else ""),
        err=True,
    )


@main.command()
@click.option("--token", envvar="GITHUB_TOKEN", default=None, help="GitHub token")
@click.option(
    "-f", "--filter", "text", default=None, help="Only names or descriptions containing TEXT"
)
@click.pass_obj
def repos(session: AppSession, token: str | None, text: str | None) -> None:
    """List repositories visible to the token."""
    if token:
        session.login(token)
    if not session.authenticated:
        click.echo("A token is required (--token or GITHUB_TOKEN)", err=True)
        sys.exit(1)

    async def _run():
        async with GitHubClient.from_session(session) as client:
            return await list_user_repos(client)

    try:
        found = asyncio.run(_run())
    except CommitReelError as exc:
        click.echo(f"Failed to list repositories: {exc}", err=True)
        sys.exit(1)
    for repo in filter_repos(found, text):
        marker = "*" if repo.private else " "
        click.echo(f"{marker} {repo.full_name}")


@main.group()
def cache() -> None:
    """Inspect or drop cached results."""


@cache.command("list")
@click.pass_obj
def cache_list(session: AppSession) -> None:
    """List cached repositories, newest first."""
    entries = _cache_or_exit(session.settings).list()
    if not entries:
        click.echo("Cache is empty")
        return
    for entry in entries:
        click.echo(
            f"{entry.full_name:40} {entry.event_count:>8} events  "
            f"{entry.last_commit_sha[:10]}  {_format_time(entry.cached_at)}"
        )


@cache.command("invalidate")
@click.argument("repository")
@click.pass_obj
def cache_invalidate(session: AppSession, repository: str) -> None:
    """Drop the cached result for REPOSITORY."""
    identity = _repository(repository)
    _cache_or_exit(session.settings).invalidate(identity)
    click.echo(f"Invalidated {identity}")


@cache.command("clear")
@click.confirmation_option(prompt="Drop every cached repository?")
@click.pass_obj
def cache_clear(session: AppSession) -> None:
    """Drop every cached result."""
    removed = _cache_or_exit(session.settings).clear()
    click.echo(f"Removed {removed} entries")


if __name__ == "__main__":
    main()
