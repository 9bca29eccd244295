"""OAuth data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from wscli.auth.constants import AUTHORIZE_URL, TOKEN_URL


class AuthState(str, Enum):
    """Lifecycle of a TokenManager."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenRecord:
    """Persisted token for one account.

    ``expires_at`` is always timezone-aware UTC. ``refresh_token`` is absent
    for service-account tokens.
    """

    access_token: str
    expires_at: datetime
    refresh_token: str | None = None
    scopes: frozenset[str] = field(default_factory=frozenset)

    def is_fresh(self, now: datetime, skew: float) -> bool:
        return now < self.expires_at - timedelta(seconds=skew)

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "scopes": sorted(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenRecord":
        """Build a record from persisted data; raises KeyError/ValueError/TypeError on bad input."""
        access = data["access_token"]
        if not isinstance(access, str) or not access:
            raise ValueError("access_token must be a non-empty string")
        refresh = data.get("refresh_token")
        if refresh is not None and not isinstance(refresh, str):
            raise TypeError("refresh_token must be a string")
        expires_at = datetime.fromisoformat(data["expires_at"])
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        scopes = data.get("scopes") or []
        if not isinstance(scopes, list):
            raise TypeError("scopes must be a list")
        return cls(
            access_token=access,
            refresh_token=refresh,
            expires_at=expires_at.astimezone(timezone.utc),
            scopes=frozenset(str(s) for s in scopes),
        )


@dataclass(frozen=True)
class OAuthCredentials:
    """Client credentials read from a Google credentials.json file."""

    client_id: str
    client_secret: str
    auth_uri: str = AUTHORIZE_URL
    token_uri: str = TOKEN_URL
    redirect_uris: tuple[str, ...] = ()
    project_id: str | None = None
