"""Google OAuth login and refresh-token grant."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import urllib.parse
import webbrowser
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

import httpx

from wscli.auth.constants import (
    CALLBACK_TIMEOUT_SEC,
    MANUAL_PROMPT_DELAY_SEC,
    REDIRECT_URI,
    SCOPES,
)
from wscli.auth.models import OAuthCredentials, TokenRecord
from wscli.auth.pkce import (
    _create_state,
    _generate_pkce,
    _parse_authorization_input,
    _parse_token_payload,
)
from wscli.auth.server import _start_local_server
from wscli.client.errors import (
    ApiError,
    AuthenticationFailedError,
    TokenExpiredError,
    decode_body,
    error_for_status,
    error_from_transport,
    extract_error_message,
)

logger = logging.getLogger(__name__)

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class Authenticator(ABC):
    """Produces and renews TokenRecords for one credential type."""

    @abstractmethod
    async def login(self) -> TokenRecord:
        """Obtain a brand-new token, interactively if needed."""

    @abstractmethod
    async def refresh(self, record: TokenRecord) -> TokenRecord:
        """Renew an expired token."""


def read_oauth_credentials(path: Path) -> OAuthCredentials:
    """Read a Google credentials.json with an ``installed`` or ``web`` client."""
    try:
        secret = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise AuthenticationFailedError(f"Failed to read credentials {path}: {exc}") from exc
    except ValueError as exc:
        raise AuthenticationFailedError(f"Invalid JSON in credentials {path}: {exc}") from exc

    obj = None
    if isinstance(secret, dict):
        obj = secret.get("installed") or secret.get("web")
    if not isinstance(obj, dict):
        raise AuthenticationFailedError("credentials.json must contain 'installed' or 'web' key")

    client_id = obj.get("client_id")
    client_secret = obj.get("client_secret")
    if not isinstance(client_id, str) or not client_id.strip():
        raise AuthenticationFailedError("client_id cannot be empty")
    if not isinstance(client_secret, str) or not client_secret.strip():
        raise AuthenticationFailedError("client_secret cannot be empty")

    kwargs: dict[str, Any] = {}
    if obj.get("auth_uri"):
        kwargs["auth_uri"] = str(obj["auth_uri"])
    if obj.get("token_uri"):
        kwargs["token_uri"] = str(obj["token_uri"])
    return OAuthCredentials(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uris=tuple(str(u) for u in obj.get("redirect_uris") or ()),
        project_id=obj.get("project_id"),
        **kwargs,
    )


def find_credentials_file(candidates: list[Path]) -> Path | None:
    return next((p for p in candidates if p.is_file()), None)


def build_auth_url(
    credentials: OAuthCredentials,
    state: str,
    challenge: str,
    scopes: tuple[str, ...] = SCOPES,
) -> str:
    params = {
        "response_type": "code",
        "client_id": credentials.client_id,
        "redirect_uri": REDIRECT_URI,
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    }
    return f"{credentials.auth_uri}?{urllib.parse.urlencode(params)}"


def _token_error(response: httpx.Response, action: str) -> ApiError:
    body = decode_body(response.content)
    message = f"{action} failed: {extract_error_message(body, default=f'HTTP {response.status_code}')}"
    if response.status_code in (400, 401):
        if isinstance(body, dict) and body.get("error") == "invalid_grant":
            return TokenExpiredError(
                f"{message}. Run 'wscli auth login' to re-authenticate.", response.status_code
            )
        return AuthenticationFailedError(message, response.status_code)
    return error_for_status(response.status_code, body, response.headers)


async def post_token_request(
    http: httpx.AsyncClient,
    token_uri: str,
    data: dict[str, str],
    action: str,
) -> dict[str, Any]:
    try:
        response = await http.post(token_uri, data=data, headers=_FORM_HEADERS)
    except httpx.TransportError as exc:
        raise error_from_transport(exc) from exc
    if response.status_code != 200:
        raise _token_error(response, action)
    payload = decode_body(response.content)
    if not isinstance(payload, dict):
        raise AuthenticationFailedError(f"{action} returned a non-JSON response")
    return payload


async def _read_stdin_line() -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, sys.stdin.readline)


async def _await_manual_input(on_manual_code_input: Callable[[str], None] | None) -> str:
    await asyncio.sleep(MANUAL_PROMPT_DELAY_SEC)
    if on_manual_code_input:
        on_manual_code_input(
            "Paste the authorization code (or full redirect URL), or wait for the browser callback:"
        )
    return await _read_stdin_line()


class OAuthAuthenticator(Authenticator):
    """Installed-app authorization-code flow with refresh tokens."""

    def __init__(
        self,
        credentials: OAuthCredentials,
        http: httpx.AsyncClient,
        scopes: tuple[str, ...] = SCOPES,
        on_auth: Callable[[str], None] | None = None,
        on_status: Callable[[str], None] | None = None,
        on_manual_code_input: Callable[[str], None] | None = None,
        callback_timeout: float = CALLBACK_TIMEOUT_SEC,
    ):
        self.credentials = credentials
        self.http = http
        self.scopes = scopes
        self.on_auth = on_auth
        self.on_status = on_status
        self.on_manual_code_input = on_manual_code_input
        self.callback_timeout = callback_timeout

    async def exchange_code(self, code: str, verifier: str) -> TokenRecord:
        payload = await post_token_request(
            self.http,
            self.credentials.token_uri,
            {
                "grant_type": "authorization_code",
                "code": code,
                "code_verifier": verifier,
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "redirect_uri": REDIRECT_URI,
            },
            "Token exchange",
        )
        try:
            return _parse_token_payload(payload, requested_scopes=self.scopes)
        except ValueError as exc:
            raise AuthenticationFailedError(f"Token exchange: {exc}") from exc

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        if not record.refresh_token:
            raise TokenExpiredError("No refresh token available. Run 'wscli auth login' to re-authenticate.")
        payload = await post_token_request(
            self.http,
            self.credentials.token_uri,
            {
                "grant_type": "refresh_token",
                "refresh_token": record.refresh_token,
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
            },
            "Token refresh",
        )
        try:
            return _parse_token_payload(
                payload,
                previous_refresh=record.refresh_token,
                requested_scopes=tuple(record.scopes) or self.scopes,
            )
        except ValueError as exc:
            raise AuthenticationFailedError(f"Token refresh: {exc}") from exc

    async def _wait_for_code(self, code_future: asyncio.Future[str | None], state: str) -> str | None:
        callback_task = asyncio.ensure_future(asyncio.wait_for(code_future, timeout=self.callback_timeout))
        manual_task = asyncio.ensure_future(_await_manual_input(self.on_manual_code_input))
        tasks = [callback_task, manual_task]
        try:
            done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        for task in done:
            try:
                result = task.result()
            except asyncio.TimeoutError:
                result = None
            if not result:
                continue
            if task is manual_task:
                parsed_code, parsed_state = _parse_authorization_input(result)
                if parsed_state and parsed_state != state:
                    raise AuthenticationFailedError("State validation failed.")
                return parsed_code
            return result
        return None

    async def login(self) -> TokenRecord:
        verifier, challenge = _generate_pkce()
        state = _create_state()
        url = build_auth_url(self.credentials, state, challenge, self.scopes)

        loop = asyncio.get_running_loop()
        code_future: asyncio.Future[str | None] = loop.create_future()

        def _notify(code: str | None, error: str | None) -> None:
            def _set() -> None:
                if code_future.done():
                    return
                if error:
                    code_future.set_exception(AuthenticationFailedError(f"Authorization denied: {error}"))
                else:
                    code_future.set_result(code)

            loop.call_soon_threadsafe(_set)

        server, server_error = _start_local_server(state, on_result=_notify)
        if self.on_auth:
            self.on_auth(url)
        else:
            webbrowser.open(url)

        if not server and server_error and self.on_status:
            self.on_status(
                f"Local callback server could not start ({server_error}). "
                "You will need to paste the callback URL or authorization code."
            )

        try:
            code: str | None = None
            if server:
                code = await self._wait_for_code(code_future, state)
            if not code:
                raw = await _read_stdin_line()
                parsed_code, parsed_state = _parse_authorization_input(raw)
                if parsed_state and parsed_state != state:
                    raise AuthenticationFailedError("State validation failed.")
                code = parsed_code
            if not code:
                raise AuthenticationFailedError("Authorization code not found.")

            if self.on_status:
                self.on_status("Exchanging authorization code for tokens...")
            return await self.exchange_code(code, verifier)
        finally:
            if server:
                server.shutdown()
                server.server_close()
