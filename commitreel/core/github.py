"""GitHub repository identity utilities."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class RepositoryId:
    """(owner, name) pair identifying a hosted repository."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def clone_url(self, base_url: str = "https://github.com", token: str | None = None) -> str:
        """HTTPS clone URL, with the token embedded as basic-auth when given."""
        base = base_url.rstrip("/")
        if token and "://" in base:
            scheme, host = base.split("://", 1)
            base = f"{scheme}://x-access-token:{token}@{host}"
        return f"{base}/{self.owner}/{self.name}.git"

    def __str__(self) -> str:
        return self.full_name


def parse_repo_url(repo_url: str) -> tuple[str, str]:
    """Extract (owner, repo) from a GitHub URL or an ``owner/repo`` string.

    Raises ValueError if the input cannot be parsed.
    """
    result = _extract_owner_repo(repo_url)
    if result is None:
        raise ValueError(f"cannot parse GitHub repo URL: {repo_url!r}")
    owner, repo = result.split("/", 1)
    return owner, repo


def parse_repository_id(value: str) -> RepositoryId:
    owner, name = parse_repo_url(value)
    return RepositoryId(owner, name)


def _extract_owner_repo(repo_url: str) -> str | None:
    """Extract 'owner/repo' from a GitHub URL.

    Handles:
      - owner/repo
      - https://github.com/owner/repo
      - https://github.com/owner/repo.git
      - git@github.com:owner/repo.git
    """
    repo_url = repo_url.strip().rstrip("/")
    if repo_url.endswith(".git"):
        repo_url = repo_url[:-4]

    # SSH format: git@github.com:owner/repo
    if repo_url.startswith("git@"):
        colon_idx = repo_url.find(":")
        if colon_idx == -1:
            return None
        repo_url = repo_url[colon_idx + 1 :]
    elif "://" in repo_url:
        repo_url = repo_url.split("://", 1)[1]
        # drop host
        if "/" not in repo_url:
            return None
        repo_url = repo_url.split("/", 1)[1]

    parts = repo_url.split("/")
    if len(parts) == 2 and all(parts):
        return f"{parts[0]}/{parts[1]}"
    return None
