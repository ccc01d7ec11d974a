"""Per-repository bearer-token authentication state."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

_PARAM_RE = re.compile(r'(\w+)\s*=\s*(?:"([^"]*)"|([^\s,]+))')


class AuthState(str, Enum):
    """Where a repository session is in the challenge/response exchange."""

    UNAUTHENTICATED = "unauthenticated"
    CHALLENGED = "challenged"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class BearerChallenge:
    """Parsed ``WWW-Authenticate: Bearer realm=...,service=...,scope=...``."""

    realm: str
    service: str | None = None
    scope: str | None = None

    @classmethod
    def parse(cls, header: str) -> "BearerChallenge | None":
        """Parse a challenge header; None if it is not a Bearer challenge with a realm."""
        scheme, _, params = header.strip().partition(" ")
        if scheme.lower() != "bearer":
            return None
        values = {}
        for match in _PARAM_RE.finditer(params):
            key = match.group(1).lower()
            values[key] = match.group(2) if match.group(2) is not None else match.group(3)
        realm = values.get("realm")
        if not realm:
            return None
        return cls(realm=realm, service=values.get("service"), scope=values.get("scope"))


@dataclass
class RepositorySession:
    """Auth state for one {registry, repository} pair during a pull.

    Tokens live only as long as the session; nothing is persisted.
    """

    registry: str
    repository: str
    base_url: str
    state: AuthState = AuthState.UNAUTHENTICATED
    challenge: BearerChallenge | None = None
    token: str | None = field(default=None, repr=False)

    @property
    def default_scope(self) -> str:
        return f"repository:{self.repository}:pull"

    def challenged(self, challenge: BearerChallenge) -> None:
        self.challenge = challenge
        self.token = None
        self.state = AuthState.CHALLENGED

    def authenticated(self, token: str | None) -> None:
        """Mark the session authenticated; ``None`` means anonymous access is allowed."""
        self.token = token
        self.state = AuthState.AUTHENTICATED

    def auth_headers(self) -> dict[str, str]:
        if self.state is AuthState.AUTHENTICATED and self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}
