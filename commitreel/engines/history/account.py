"""Authenticated-user lookups: who am I, which repositories can I see."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from commitreel.engines.history.github_client import GitHubClient
from commitreel.engines.history.pagination import PaginatedFetcher
from commitreel.engines.history.schemas import Account, RepoSummary

log = structlog.get_logger("commitreel.engine")


async def get_user(client: GitHubClient) -> str | None:
    """Login of the token's owner (``GET /user``)."""
    return Account.model_validate(await client.get("/user")).login


async def list_user_repos(client: GitHubClient, *, sort: str = "updated") -> list[RepoSummary]:
    """Every repository visible to the token, most recently updated first."""
    listing = await PaginatedFetcher(client).fetch_all("/user/repos", {"sort": sort})
    repos: list[RepoSummary] = []
    for item in listing.items:
        try:
            repos.append(RepoSummary.model_validate(item))
        except ValidationError as exc:
            log.warning("account.repo_malformed", error=str(exc).splitlines()[0])
    return repos


def filter_repos(repos: list[RepoSummary], text: str | None) -> list[RepoSummary]:
    """Case-insensitive substring match on full name or description."""
    if not text:
        return list(repos)
    needle = text.lower()
    return [
        r
        for r in repos
        if needle in r.full_name.lower() or needle in (r.description or "").lower()
    ]
