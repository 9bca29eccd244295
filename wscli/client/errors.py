"""Error taxonomy surfaced by the client core.

Every failure that leaves the core is an :class:`ApiError` carrying an
:class:`ErrorCode`, a human-readable message and, when one exists, the HTTP
status that produced it.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

import httpx


class ErrorCode(str, Enum):
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    TOKEN_EXPIRED = "TokenExpired"
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    QUOTA_EXCEEDED = "QuotaExceeded"
    NOT_FOUND = "NotFound"
    PERMISSION_DENIED = "PermissionDenied"
    INVALID_REQUEST = "InvalidRequest"
    NETWORK_ERROR = "NetworkError"
    SERVER_ERROR = "ServerError"


class ApiError(Exception):
    """Base error for all core failures."""

    code: ErrorCode = ErrorCode.SERVER_ERROR

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "status": self.status}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, status={self.status!r}, message={self.message!r})"


class AuthenticationFailedError(ApiError):
    code = ErrorCode.AUTHENTICATION_FAILED


class TokenExpiredError(ApiError):
    code = ErrorCode.TOKEN_EXPIRED


class RateLimitExceededError(ApiError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(self, message: str, status: int | None = None, retry_after: float | None = None):
        super().__init__(message, status)
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        # 403 userRateLimitExceeded is terminal; only 429 is retried.
        return self.status == 429


class QuotaExceededError(ApiError):
    code = ErrorCode.QUOTA_EXCEEDED


class NotFoundError(ApiError):
    code = ErrorCode.NOT_FOUND


class PermissionDeniedError(ApiError):
    code = ErrorCode.PERMISSION_DENIED


class InvalidRequestError(ApiError):
    code = ErrorCode.INVALID_REQUEST


class NetworkError(ApiError):
    code = ErrorCode.NETWORK_ERROR

    @property
    def retryable(self) -> bool:
        return True


class ServerError(ApiError):
    code = ErrorCode.SERVER_ERROR

    @property
    def retryable(self) -> bool:
        return True


_QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded", "dailyLimitExceededUnreg"}
_RATE_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return max(0.0, seconds)


def extract_error_message(body: Any, default: str = "Request failed") -> str:
    """Pull the message out of a Google-style error body."""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg:
                return msg
        elif isinstance(err, str) and err:
            description = body.get("error_description")
            return f"{err}: {description}" if description else err
    elif isinstance(body, str) and body.strip():
        return body.strip()[:500]
    return default


def _error_reasons(body: Any) -> set[str]:
    reasons: set[str] = set()
    if not isinstance(body, dict):
        return reasons
    err = body.get("error")
    if not isinstance(err, dict):
        return reasons
    for item in err.get("errors") or []:
        if isinstance(item, dict) and isinstance(item.get("reason"), str):
            reasons.add(item["reason"])
    details = err.get("details") or []
    for item in details:
        if isinstance(item, dict) and isinstance(item.get("reason"), str):
            reasons.add(item["reason"])
    return reasons


def error_for_status(
    status: int,
    body: Any = None,
    headers: httpx.Headers | dict[str, str] | None = None,
) -> ApiError:
    """Map an upstream HTTP status and error body to an ApiError."""
    message = extract_error_message(body, default=f"HTTP {status}")
    if status == 401:
        return AuthenticationFailedError(message, status)
    if status == 403:
        reasons = _error_reasons(body)
        if reasons & _QUOTA_REASONS:
            return QuotaExceededError(message, status)
        if reasons & _RATE_REASONS:
            return RateLimitExceededError(message, status)
        return PermissionDeniedError(message, status)
    if status == 404:
        return NotFoundError(message, status)
    if status == 429:
        retry_after = parse_retry_after((headers or {}).get("Retry-After"))
        return RateLimitExceededError(message, status, retry_after=retry_after)
    if status >= 500:
        return ServerError(message, status)
    return InvalidRequestError(message, status)


def decode_body(content: bytes | str) -> Any:
    """Decode a JSON body, falling back to the raw text."""
    text = content.decode("utf-8", "replace") if isinstance(content, bytes) else content
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return text


def error_from_response(response: httpx.Response) -> ApiError:
    return error_for_status(response.status_code, decode_body(response.content), response.headers)


def error_from_transport(exc: httpx.TransportError) -> NetworkError:
    return NetworkError(f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__)
