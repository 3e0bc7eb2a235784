"""Process-wide session state: credential, user and rate-limit budget."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from commitreel.core.config import Settings
from commitreel.engines.history.rate_limit import RateLimitTracker

log = structlog.get_logger("commitreel.session")


@dataclass
class AppSession:
    """Explicit holder for state the pipeline would otherwise keep in globals.

    Created at process start, updated by :meth:`login`, torn down by
    :meth:`logout`. The token is opaque to the pipeline.
    """

    settings: Settings = field(default_factory=Settings)
    token: str | None = None
    user_login: str | None = None
    rate_limit: RateLimitTracker = field(default_factory=RateLimitTracker)

    @classmethod
    def from_env(cls) -> AppSession:
        settings = Settings.from_env()
        return cls(settings=settings, token=settings.token)

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def login(self, token: str, user_login: str | None = None) -> None:
        self.token = token
        self.user_login = user_login
        log.info("session.login", user=user_login)

    def logout(self) -> None:
        self.token = None
        self.user_login = None
        self.rate_limit.reset()
        log.info("session.logout")
