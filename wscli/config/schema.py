"""Configuration schema using Pydantic.

Values come from ``config.json`` and can be overridden from the environment
with the ``WSCLI_`` prefix and ``__`` as the nesting delimiter, e.g.
``WSCLI_RETRY__MAX_ATTEMPTS=5`` or ``WSCLI_RATE_LIMITS__GMAIL__CAPACITY=20``.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from wscli.auth.constants import DEFAULT_ACCOUNT
from wscli.client.rate_limiter import RateLimit
from wscli.client.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY
from wscli.client.services import SERVICES


class AuthConfig(BaseModel):
    """Account selection and credential locations."""

    current_account: str | None = None
    credentials_path: str | None = None
    accounts: dict[str, str] = Field(
        default_factory=dict,
        description="Account id -> credentials file used at its most recent login",
    )
    service_account_path: str | None = None
    subject: str | None = Field(default=None, description="User to impersonate with a service account")
    keyring: bool = Field(default=True, description="Try the OS secret store before the token files")

    @property
    def active_account(self) -> str:
        return self.current_account or DEFAULT_ACCOUNT


class HttpConfig(BaseModel):
    timeout: float = Field(default=30.0, gt=0)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    base_delay: float = Field(default=DEFAULT_BASE_DELAY, ge=0)
    max_delay: float = Field(default=DEFAULT_MAX_DELAY, ge=0)


class RateLimitConfig(BaseModel):
    capacity: float = Field(ge=1)
    refill_rate: float = Field(gt=0)

    def to_limit(self) -> RateLimit:
        return RateLimit(capacity=self.capacity, refill_rate=self.refill_rate)


def _default_rate_limits() -> dict[str, RateLimitConfig]:
    return {
        name: RateLimitConfig(capacity=svc.rate_limit.capacity, refill_rate=svc.rate_limit.refill_rate)
        for name, svc in SERVICES.items()
    }


class Config(BaseSettings):
    """Root configuration. Environment variables take precedence over the file."""

    model_config = SettingsConfigDict(
        env_prefix="WSCLI_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    auth: AuthConfig = Field(default_factory=AuthConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limits: dict[str, RateLimitConfig] = Field(default_factory=_default_rate_limits)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @field_validator("rate_limits", mode="before")
    @classmethod
    def merge_rate_limits(cls, v: Any) -> dict[str, Any]:
        """Overlay configured limits on the per-service defaults, field by field."""
        merged: dict[str, dict[str, Any]] = {
            name: limit.model_dump() for name, limit in _default_rate_limits().items()
        }
        if not v:
            return merged
        if not isinstance(v, dict):
            raise ValueError("rate_limits must be a mapping of service -> {capacity, refill_rate}")
        for name, limit in v.items():
            if isinstance(limit, BaseModel):
                limit = limit.model_dump()
            if not isinstance(limit, dict):
                raise ValueError(f"rate_limits.{name} must be a mapping")
            key = str(name).lower()
            merged[key] = {**merged.get(key, {}), **limit}
        return merged

    def rate_limits_for_services(self) -> dict[str, RateLimit]:
        return {name: limit.to_limit() for name, limit in self.rate_limits.items() if name in SERVICES}
