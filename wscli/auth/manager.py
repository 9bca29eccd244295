"""Token lifecycle for one account."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from wscli.auth.constants import REFRESH_SKEW_SEC
from wscli.auth.flow import Authenticator
from wscli.auth.models import AuthState, TokenRecord, utcnow
from wscli.auth.storage import StoreCorruptError, StoreError, TokenStore
from wscli.client.errors import ApiError, AuthenticationFailedError, TokenExpiredError
from wscli.client.retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Collapse overlapping calls for the same key into one shared task.

    The shared task is shielded, so a cancelled caller does not cancel the
    work other callers are waiting on.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task

            def _done(t: asyncio.Future[Any]) -> None:
                if self._inflight.get(key) is t:
                    del self._inflight[key]
                if not t.cancelled():
                    # Mark the exception retrieved even if every caller went away.
                    t.exception()

            task.add_done_callback(_done)
        return await asyncio.shield(task)


class TokenManager:
    """Owns the token record of one account: load, login, refresh, persist, logout.

    Refreshes are single-flight per account id; pass the same ``single_flight``
    to managers that may share an account within one process.
    """

    def __init__(
        self,
        account_id: str,
        store: TokenStore,
        authenticator: Authenticator | None = None,
        retry_policy: RetryPolicy | None = None,
        skew: float = REFRESH_SKEW_SEC,
        clock: Callable[[], datetime] = utcnow,
        single_flight: SingleFlight | None = None,
    ):
        self.account_id = account_id
        self.store = store
        self.authenticator = authenticator
        self.retry_policy = retry_policy or RetryPolicy()
        self.skew = skew
        self.clock = clock
        self.single_flight = single_flight or SingleFlight()
        self.state = AuthState.UNAUTHENTICATED
        self._record: TokenRecord | None = None

    @classmethod
    def new_for_account(cls, account_id: str, store: TokenStore, **kwargs: Any) -> "TokenManager":
        """Build a manager scoped to ``account_id``; does not authenticate."""
        return cls(account_id, store, **kwargs)

    @property
    def record(self) -> TokenRecord | None:
        return self._record

    def _check_not_logged_out(self) -> None:
        if self.state is AuthState.LOGGED_OUT:
            raise AuthenticationFailedError(f"Account '{self.account_id}' has been logged out.")

    def load(self) -> TokenRecord | None:
        """Read the persisted record; corrupt or unreadable data counts as absent."""
        try:
            record = self.store.get(self.account_id)
        except StoreCorruptError as exc:
            logger.warning("%s; re-authentication required", exc)
            return None
        except StoreError as exc:
            logger.warning("Could not read token for %s: %s", self.account_id, exc)
            return None
        if record is not None:
            self._record = record
            if self.state is AuthState.UNAUTHENTICATED:
                self.state = AuthState.AUTHENTICATED
        return record

    def _persist(self, record: TokenRecord) -> None:
        try:
            self.store.put(self.account_id, record)
        except StoreError as exc:
            raise AuthenticationFailedError(f"Could not persist token for '{self.account_id}': {exc}") from exc

    def is_authenticated(self) -> bool:
        return self._record is not None or self.load() is not None

    async def login(self) -> TokenRecord:
        """Run the authenticator's interactive flow and persist the result."""
        self._check_not_logged_out()
        if self.authenticator is None:
            raise AuthenticationFailedError("No credentials configured. Run 'wscli auth login --credentials <path>'.")
        self.state = AuthState.AUTHENTICATING
        try:
            record = await self.authenticator.login()
        except AuthenticationFailedError:
            self.state = AuthState.UNAUTHENTICATED
            raise
        except ApiError as exc:
            self.state = AuthState.UNAUTHENTICATED
            raise AuthenticationFailedError(f"Authentication failed: {exc.message}", exc.status) from exc
        self._persist(record)
        self._record = record
        self.state = AuthState.AUTHENTICATED
        logger.info("Authenticated account %s", self.account_id)
        return record

    async def ensure_authenticated(self, interactive: bool = True) -> TokenRecord:
        """Return the stored record, logging in first when there is none."""
        self._check_not_logged_out()
        record = self._record or self.load()
        if record is not None:
            return record
        if not interactive or self.authenticator is None:
            raise AuthenticationFailedError(
                f"Account '{self.account_id}' is not authenticated. Run 'wscli auth login' first."
            )
        return await self.login()

    async def get_access_token(self) -> str:
        """Return a token valid for at least the skew margin, refreshing if needed."""
        self._check_not_logged_out()
        record = self._record or self.load()
        if record is None:
            raise AuthenticationFailedError(
                f"Account '{self.account_id}' is not authenticated. Run 'wscli auth login' first."
            )
        if record.is_fresh(self.clock(), self.skew):
            return record.access_token
        refreshed = await self.single_flight.do(self.account_id, lambda: self._refresh(record))
        return refreshed.access_token

    async def force_refresh(self, rejected_token: str | None = None) -> str:
        """Refresh even if the token looks fresh (after the server rejected it).

        When ``rejected_token`` is given and the current token already differs
        from it, the current token is returned without another refresh.
        """
        self._check_not_logged_out()
        record = self._record or self.load()
        if record is None:
            raise AuthenticationFailedError(
                f"Account '{self.account_id}' is not authenticated. Run 'wscli auth login' first."
            )
        if rejected_token is not None and record.access_token != rejected_token:
            return record.access_token
        refreshed = await self.single_flight.do(self.account_id, lambda: self._refresh(record, force=True))
        return refreshed.access_token

    async def _refresh(self, stale: TokenRecord, force: bool = False) -> TokenRecord:
        if self.authenticator is None:
            raise TokenExpiredError(
                f"Token for '{self.account_id}' expired and no credentials are available to refresh it. "
                "Run 'wscli auth login' to re-authenticate."
            )
        # Another process may have refreshed already.
        latest = self.load()
        if latest is not None and latest != stale and latest.is_fresh(self.clock(), self.skew):
            self._record = latest
            return latest

        previous_state = self.state
        self.state = AuthState.REFRESHING
        logger.info("Refreshing access token for %s%s", self.account_id, " (forced)" if force else "")
        try:
            record = await self.retry_policy.run(
                lambda: self.authenticator.refresh(stale),
                description=f"Token refresh for {self.account_id}",
            )
        except TokenExpiredError:
            self.state = AuthState.UNAUTHENTICATED
            raise
        except BaseException:
            self.state = previous_state
            raise

        self._record = record
        self.state = AuthState.AUTHENTICATED
        try:
            self._persist(record)
        except AuthenticationFailedError as exc:
            logger.warning("%s; continuing with the in-memory token", exc.message)
        return record

    def list_accounts(self) -> set[str]:
        try:
            return self.store.list()
        except StoreError as exc:
            raise AuthenticationFailedError(f"Could not list stored accounts: {exc}") from exc

    def logout(self, account_id: str | None = None) -> None:
        """Delete a stored token; deleting an unknown account is not an error."""
        target = account_id or self.account_id
        try:
            self.store.delete(target)
        except StoreError as exc:
            raise AuthenticationFailedError(f"Could not remove stored token for '{target}': {exc}") from exc
        if target == self.account_id:
            self._record = None
            self.state = AuthState.LOGGED_OUT
        logger.info("Logged out account %s", target)

    def status(self) -> dict[str, Any]:
        record = self._record or (self.load() if self.state is not AuthState.LOGGED_OUT else None)
        return {
            "account": self.account_id,
            "authenticated": record is not None,
            "state": self.state.value,
            "storage": self.store.name,
            "expires_at": record.expires_at.isoformat() if record else None,
            "scopes": sorted(record.scopes) if record else [],
        }
