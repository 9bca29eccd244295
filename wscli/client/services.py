"""Upstream Google Workspace services.

Default rate budgets sit below each API's published per-user quota.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

from wscli.client.errors import InvalidRequestError
from wscli.client.rate_limiter import RateLimit


@dataclass(frozen=True)
class ServiceConfig:
    name: str
    base_url: str
    rate_limit: RateLimit
    batch_url: str | None = None

    @property
    def api_root(self) -> str:
        """Versioned path prefix, e.g. ``/gmail/v1``."""
        return urlsplit(self.base_url).path.rstrip("/")

    @property
    def supports_batch(self) -> bool:
        return self.batch_url is not None


SERVICES: dict[str, ServiceConfig] = {
    "gmail": ServiceConfig(
        name="gmail",
        base_url="https://gmail.googleapis.com/gmail/v1",
        batch_url="https://gmail.googleapis.com/batch/gmail/v1",
        rate_limit=RateLimit(capacity=50, refill_rate=40),
    ),
    "drive": ServiceConfig(
        name="drive",
        base_url="https://www.googleapis.com/drive/v3",
        batch_url="https://www.googleapis.com/batch/drive/v3",
        rate_limit=RateLimit(capacity=20, refill_rate=15),
    ),
    "calendar": ServiceConfig(
        name="calendar",
        base_url="https://www.googleapis.com/calendar/v3",
        batch_url="https://www.googleapis.com/batch/calendar/v3",
        rate_limit=RateLimit(capacity=10, refill_rate=8),
    ),
    "docs": ServiceConfig(
        name="docs",
        base_url="https://docs.googleapis.com/v1",
        rate_limit=RateLimit(capacity=5, refill_rate=4),
    ),
    "sheets": ServiceConfig(
        name="sheets",
        base_url="https://sheets.googleapis.com/v4",
        rate_limit=RateLimit(capacity=5, refill_rate=1),
    ),
    "slides": ServiceConfig(
        name="slides",
        base_url="https://slides.googleapis.com/v1",
        rate_limit=RateLimit(capacity=10, refill_rate=8),
    ),
    "tasks": ServiceConfig(
        name="tasks",
        base_url="https://tasks.googleapis.com/tasks/v1",
        rate_limit=RateLimit(capacity=10, refill_rate=8),
    ),
}


def get_service(name: str) -> ServiceConfig:
    try:
        return SERVICES[name]
    except KeyError:
        raise InvalidRequestError(
            f"Unknown service: {name}. Use one of: {', '.join(sorted(SERVICES))}"
        ) from None
