"""REST response shapes, validated at the API boundary."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from commitreel.engines.history.models import ChangeAction, Commit, action_for_status


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GitActor(_Lenient):
    name: str | None = None
    date: datetime


class GitCommitInfo(_Lenient):
    author: GitActor


class Account(_Lenient):
    login: str | None = None


class ParentRef(_Lenient):
    sha: str


class CommitSummary(_Lenient):
    """One item of ``GET /repos/{owner}/{repo}/commits``."""

    sha: str
    commit: GitCommitInfo
    author: Account | None = None
    parents: list[ParentRef] = Field(default_factory=list)

    @property
    def author_name(self) -> str:
        if self.commit.author.name:
            return self.commit.author.name
        if self.author is not None and self.author.login:
            return self.author.login
        return "Unknown"

    @property
    def timestamp(self) -> int:
        return int(self.commit.author.date.timestamp())

    def to_commit(self) -> Commit:
        return Commit(
            sha=self.sha,
            author=self.author_name,
            timestamp=self.timestamp,
            parents=tuple(p.sha for p in self.parents),
        )


class FileChange(_Lenient):
    filename: str
    status: str = "modified"
    previous_filename: str | None = None

    @property
    def action(self) -> ChangeAction:
        return action_for_status(self.status)


class CommitDetail(_Lenient):
    """``GET /repos/{owner}/{repo}/commits/{sha}``."""

    sha: str
    files: list[FileChange] = Field(default_factory=list)

    @field_validator("files", mode="before")
    @classmethod
    def _none_is_empty(cls, value: object) -> object:
        return [] if value is None else value


class RepoSummary(_Lenient):
    """One item of ``GET /user/repos``."""

    full_name: str
    private: bool = False
    description: str | None = None
    default_branch: str | None = None
    updated_at: datetime | None = None
