"""Service-account authentication (JWT bearer grant)."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import httpx
from google.auth import crypt, jwt

from wscli.auth.constants import ASSERTION_LIFETIME_SEC, SCOPES, TOKEN_URL
from wscli.auth.flow import Authenticator, post_token_request
from wscli.auth.models import TokenRecord
from wscli.auth.pkce import _parse_token_payload
from wscli.client.errors import AuthenticationFailedError

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


def load_service_account_info(path: Path) -> dict[str, Any]:
    try:
        info = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise AuthenticationFailedError(f"Failed to read service account key {path}: {exc}") from exc
    except ValueError as exc:
        raise AuthenticationFailedError(f"Invalid JSON in service account key {path}: {exc}") from exc
    if not isinstance(info, dict) or info.get("type") != "service_account":
        raise AuthenticationFailedError(f"{path} is not a service account key file")
    for key in ("client_email", "private_key"):
        if not info.get(key):
            raise AuthenticationFailedError(f"Service account key is missing '{key}'")
    return info


class ServiceAccountAuthenticator(Authenticator):
    """Mints access tokens from a signed assertion; there is no refresh token.

    ``subject`` impersonates a Workspace user through domain-wide delegation.
    """

    def __init__(
        self,
        info: dict[str, Any],
        http: httpx.AsyncClient,
        scopes: tuple[str, ...] = SCOPES,
        subject: str | None = None,
    ):
        try:
            self._signer = crypt.RSASigner.from_service_account_info(info)
        except ValueError as exc:
            raise AuthenticationFailedError(f"Invalid service account private key: {exc}") from exc
        self.client_email: str = info["client_email"]
        self.token_uri: str = info.get("token_uri") or TOKEN_URL
        self.http = http
        self.scopes = scopes
        self.subject = subject

    @classmethod
    def from_file(cls, path: Path, http: httpx.AsyncClient, **kwargs: Any) -> "ServiceAccountAuthenticator":
        return cls(load_service_account_info(path), http, **kwargs)

    def build_assertion(self, now: int | None = None) -> str:
        issued = int(time.time()) if now is None else now
        payload: dict[str, Any] = {
            "iss": self.client_email,
            "scope": " ".join(self.scopes),
            "aud": self.token_uri,
            "iat": issued,
            "exp": issued + ASSERTION_LIFETIME_SEC,
        }
        if self.subject:
            payload["sub"] = self.subject
        return jwt.encode(self._signer, payload).decode("utf-8")

    async def login(self) -> TokenRecord:
        payload = await post_token_request(
            self.http,
            self.token_uri,
            {"grant_type": JWT_BEARER_GRANT, "assertion": self.build_assertion()},
            "Service account token request",
        )
        try:
            return _parse_token_payload(payload, requested_scopes=self.scopes)
        except ValueError as exc:
            raise AuthenticationFailedError(f"Service account token request: {exc}") from exc

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        return await self.login()
