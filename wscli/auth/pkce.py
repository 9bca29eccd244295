"""PKCE and authorization helpers."""

from __future__ import annotations

import base64
import hashlib
import os
import urllib.parse
from datetime import timedelta
from typing import Any

from wscli.auth.constants import DEFAULT_EXPIRES_IN_SEC
from wscli.auth.models import TokenRecord, utcnow


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _generate_pkce() -> tuple[str, str]:
    verifier = _base64url(os.urandom(32))
    challenge = _base64url(hashlib.sha256(verifier.encode("utf-8")).digest())
    return verifier, challenge


def _create_state() -> str:
    return _base64url(os.urandom(16))


def _parse_authorization_input(raw: str) -> tuple[str | None, str | None]:
    """Accept a full redirect URL, a query string, or a bare code."""
    value = raw.strip()
    if not value:
        return None, None
    url = urllib.parse.urlparse(value)
    if url.query:
        qs = urllib.parse.parse_qs(url.query)
        code = qs.get("code", [None])[0]
        if code:
            return code, qs.get("state", [None])[0]

    if "code=" in value:
        qs = urllib.parse.parse_qs(value.lstrip("?"))
        return qs.get("code", [None])[0], qs.get("state", [None])[0]

    return value, None


def _parse_token_payload(
    payload: dict[str, Any],
    previous_refresh: str | None = None,
    requested_scopes: tuple[str, ...] = (),
) -> TokenRecord:
    """Turn a token-endpoint response into a TokenRecord.

    Google omits ``refresh_token`` on refresh responses; the previous one is kept.
    """
    access = payload.get("access_token")
    if not isinstance(access, str) or not access:
        raise ValueError("Token response missing access_token")
    expires_in = payload.get("expires_in")
    if not isinstance(expires_in, (int, float)) or expires_in <= 0:
        expires_in = DEFAULT_EXPIRES_IN_SEC
    refresh = payload.get("refresh_token") or previous_refresh
    scope = payload.get("scope")
    scopes = frozenset(scope.split()) if isinstance(scope, str) and scope else frozenset(requested_scopes)
    return TokenRecord(
        access_token=access,
        refresh_token=refresh,
        expires_at=utcnow() + timedelta(seconds=float(expires_in)),
        scopes=scopes,
    )
