"""Authenticated, rate-limited, retried HTTP execution against one service."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from wscli.client.errors import (
    AuthenticationFailedError,
    InvalidRequestError,
    RateLimitExceededError,
    decode_body,
    error_from_response,
    error_from_transport,
)
from wscli.client.rate_limiter import RateLimiter
from wscli.client.retry import Outcome, RetryAttempt, RetryPolicy
from wscli.client.services import ServiceConfig

if TYPE_CHECKING:
    from wscli.auth.manager import TokenManager

logger = logging.getLogger(__name__)

METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


class ApiClient:
    """Executes logical requests for one service on behalf of one account.

    Each attempt takes a rate-limit token and a fresh access token before it
    is sent. Transport failures, 429 and 5xx are retried with backoff. A 401
    triggers one forced token refresh that does not count as an attempt; a
    second 401 for the same call is terminal.
    """

    def __init__(
        self,
        service: ServiceConfig,
        token_manager: "TokenManager",
        http: httpx.AsyncClient,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy | None = None,
    ):
        self.service = service
        self.token_manager = token_manager
        self.http = http
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self.service.base_url.rstrip("/") + path

    async def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Run one logical request and return the decoded response body.

        Raises an ApiError subclass on failure. With ``timeout`` the whole call,
        retries included, is bounded and ``asyncio.TimeoutError`` propagates.
        """
        call = self.send(method, path, json=body, params=params)
        if timeout is not None:
            response = await asyncio.wait_for(call, timeout)
        else:
            response = await call
        return decode_body(response.content)

    async def send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        content: bytes | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send until a 2xx/3xx response arrives; raise the classified error otherwise."""
        method = method.upper()
        if method not in METHODS:
            raise InvalidRequestError(f"Unsupported method: {method}")
        url = self.url_for(path)
        policy = self.retry_policy
        state = RetryAttempt()
        refreshed = False

        while True:
            state.index += 1
            await self.rate_limiter.acquire(self.service.name)
            token = await self.token_manager.get_access_token()
            request_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
            try:
                response = await self.http.request(
                    method,
                    url,
                    params=params,
                    json=json if content is None else None,
                    content=content,
                    headers=request_headers,
                )
            except httpx.TransportError as exc:
                error = error_from_transport(exc)
                outcome = Outcome.RETRYABLE
            else:
                outcome = policy.classify(response.status_code)
                if outcome is Outcome.SUCCESS:
                    return response
                error = error_from_response(response)

            state.last_outcome = outcome
            state.last_error = error

            if outcome is Outcome.REFRESH_AUTH:
                if refreshed:
                    raise AuthenticationFailedError(
                        f"{error.message} (rejected again after refreshing the token)", error.status
                    ) from error
                refreshed = True
                # The refresh round-trip is not a retry attempt.
                state.index -= 1
                logger.info("%s %s returned 401, refreshing token", method, url)
                await self.token_manager.force_refresh(token)
                continue

            if not policy.should_retry(outcome, state.index):
                if state.index > 1:
                    logger.warning("%s %s failed after %d attempts: %s", method, url, state.index, error.message)
                raise error

            retry_after = error.retry_after if isinstance(error, RateLimitExceededError) else None
            delay = policy.compute_delay(state.index, retry_after)
            logger.warning(
                "%s %s failed (%s), retrying in %.2fs (attempt %d/%d)",
                method, url, error.code.value, delay, state.index + 1, policy.max_attempts,
            )
            await policy.wait(state, delay)
