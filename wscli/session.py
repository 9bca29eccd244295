"""Per-invocation session.

A Session is built once per process from the persisted configuration and
carries the selected account, its TokenManager and the shared HTTP client,
rate limiter and retry policy. Core components never look up the current
account on their own.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from wscli.auth.accounts import resolve_account, resolve_credentials_path
from wscli.auth.flow import Authenticator, OAuthAuthenticator, read_oauth_credentials
from wscli.auth.manager import SingleFlight, TokenManager
from wscli.auth.service_account import ServiceAccountAuthenticator
from wscli.auth.storage import TokenStore, default_token_store
from wscli.client.api import ApiClient
from wscli.client.batch import BatchClient
from wscli.client.errors import AuthenticationFailedError
from wscli.client.rate_limiter import RateLimiter
from wscli.client.retry import RetryPolicy
from wscli.client.services import get_service
from wscli.config.loader import load_config
from wscli.config.schema import Config

logger = logging.getLogger(__name__)


class Session:
    def __init__(
        self,
        config: Config,
        account_id: str | None = None,
        store: TokenStore | None = None,
        http: httpx.AsyncClient | None = None,
        authenticator: Authenticator | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        credentials_path: Path | None = None,
        **oauth_options: Any,
    ):
        self.config = config
        self.account_id = resolve_account(config, account_id)
        self.store = store or default_token_store(use_keyring=config.auth.keyring)
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=config.http.timeout)
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limits_for_services())
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.retry.max_attempts,
            base_delay=config.retry.base_delay,
            max_delay=config.retry.max_delay,
        )
        self.credentials_path = credentials_path
        self.oauth_options = oauth_options
        self.single_flight = SingleFlight()
        self._authenticator = authenticator
        self._managers: dict[str, TokenManager] = {}
        self._clients: dict[str, ApiClient] = {}

    @classmethod
    def from_config(cls, config: Config | None = None, account_id: str | None = None, **kwargs: Any) -> "Session":
        return cls(config or load_config(), account_id, **kwargs)

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    def resolved_credentials_path(self, account_id: str | None = None) -> Path | None:
        return resolve_credentials_path(self.config, account_id or self.account_id, self.credentials_path)

    def build_authenticator(self, account_id: str | None = None) -> Authenticator | None:
        """Service-account key if configured, else the account's OAuth client file.

        Returns None when no credentials can be found; stored tokens still work
        until they expire.
        """
        if account_id in (None, self.account_id) and self._authenticator is not None:
            return self._authenticator
        auth = self.config.auth
        if auth.service_account_path:
            return ServiceAccountAuthenticator.from_file(
                Path(auth.service_account_path).expanduser(), self.http, subject=auth.subject
            )
        path = self.resolved_credentials_path(account_id)
        if path is None:
            logger.debug("No OAuth credentials file found for %s", account_id or self.account_id)
            return None
        return OAuthAuthenticator(read_oauth_credentials(path), self.http, **self.oauth_options)

    def manager_for(self, account_id: str) -> TokenManager:
        manager = self._managers.get(account_id)
        if manager is None:
            try:
                authenticator = self.build_authenticator(account_id)
            except AuthenticationFailedError as exc:
                logger.warning("%s; stored tokens cannot be refreshed", exc.message)
                authenticator = None
            manager = TokenManager.new_for_account(
                account_id,
                self.store,
                authenticator=authenticator,
                retry_policy=self.retry_policy,
                single_flight=self.single_flight,
            )
            self._managers[account_id] = manager
        return manager

    @property
    def token_manager(self) -> TokenManager:
        return self.manager_for(self.account_id)

    def client(self, service: str) -> ApiClient:
        svc = get_service(service)
        api = self._clients.get(svc.name)
        if api is None:
            api = ApiClient(svc, self.token_manager, self.http, self.rate_limiter, self.retry_policy)
            self._clients[svc.name] = api
        return api

    def batch(self, service: str) -> BatchClient:
        return BatchClient(self.client(service))
