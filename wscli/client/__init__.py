"""Request execution: rate limiting, retries, batching and the error taxonomy."""

from wscli.client.api import ApiClient
from wscli.client.batch import BatchClient, BatchRequest, BatchResult
from wscli.client.errors import ApiError, ErrorCode
from wscli.client.rate_limiter import RateLimit, RateLimiter, TokenBucket
from wscli.client.retry import RetryPolicy
from wscli.client.services import SERVICES, ServiceConfig, get_service

__all__ = [
    "SERVICES",
    "ApiClient",
    "ApiError",
    "BatchClient",
    "BatchRequest",
    "BatchResult",
    "ErrorCode",
    "RateLimit",
    "RateLimiter",
    "RetryPolicy",
    "ServiceConfig",
    "TokenBucket",
    "get_service",
]
