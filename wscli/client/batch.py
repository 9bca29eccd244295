"""Batch requests: many logical operations in one multipart/mixed exchange.

Each part of the request body is an ``application/http`` message tagged with a
``Content-ID`` built from the caller's id. The server echoes ``response-<id>``
on each response part, in no guaranteed order, so responses are correlated by
id. Only the outer HTTP call is retried; sub-request failures are reported
per id.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from email import message_from_bytes
from email.message import Message
from typing import Any, Callable, Iterable

from wscli.client.api import METHODS, ApiClient
from wscli.client.errors import ApiError, InvalidRequestError, ServerError, decode_body, extract_error_message

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100
MISSING_RESPONSE_STATUS = 502
MISSING_RESPONSE_MESSAGE = "No response for request in batch"

_STATUS_LINE = re.compile(rb"^HTTP/\d(?:\.\d)?\s+(\d{3})")
_HEADER_END = re.compile(rb"\r?\n\r?\n")


@dataclass(frozen=True)
class BatchRequest:
    id: str
    method: str
    path: str
    body: Any = None

    @classmethod
    def from_dict(cls, data: Any) -> "BatchRequest":
        """Build from the caller's JSON form ``{id, method, path, body?}``."""
        if not isinstance(data, dict):
            raise InvalidRequestError("Each batch entry must be an object with id, method and path")
        missing = [key for key in ("id", "method", "path") if data.get(key) in (None, "")]
        if missing:
            raise InvalidRequestError(f"Batch entry is missing required field(s): {', '.join(missing)}")
        return cls(
            id=str(data["id"]),
            method=str(data["method"]).upper(),
            path=str(data["path"]),
            body=data.get("body"),
        )


@dataclass
class SubResponse:
    id: str
    status: int
    body: Any = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class BatchResult:
    status: str = "success"
    results: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "results": self.results, "errors": self.errors}

    @classmethod
    def aggregate(cls, responses: Iterable[SubResponse], errors: Iterable[dict[str, Any]] = ()) -> "BatchResult":
        result = cls()
        for resp in responses:
            if resp.ok:
                result.results.append({"id": resp.id, "status": resp.status, "body": resp.body})
            else:
                result.errors.append(
                    {"id": resp.id, "status": resp.status, "message": extract_error_message(resp.body)}
                )
        result.errors.extend(errors)
        if not result.errors:
            result.status = "success"
        elif not result.results:
            result.status = "error"
        else:
            result.status = "partial"
        return result

    @classmethod
    def failed(cls, requests: Iterable[BatchRequest], error: ApiError) -> "BatchResult":
        """Result for a batch whose outer call failed: every id is an error."""
        status = error.status or 0
        ids = dict.fromkeys(req.id for req in requests)
        return cls(
            status="error",
            results=[],
            errors=[{"id": rid, "status": status, "message": error.message} for rid in ids],
        )


def _new_boundary() -> str:
    return f"batch_{uuid.uuid4().hex}"


def _part_path(api_root: str, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    if api_root and not (path == api_root or path.startswith(api_root + "/")):
        path = api_root + path
    return path


def encode_batch(requests: list[BatchRequest], boundary: str, api_root: str = "") -> bytes:
    """Serialize sub-requests as a multipart/mixed body."""
    lines: list[str] = []
    for req in requests:
        lines.append(f"--{boundary}")
        lines.append("Content-Type: application/http")
        lines.append(f"Content-ID: <{req.id}>")
        lines.append("")
        lines.append(f"{req.method} {_part_path(api_root, req.path)} HTTP/1.1")
        if req.body is not None:
            payload = json.dumps(req.body, separators=(",", ":"))
            lines.append("Content-Type: application/json; charset=UTF-8")
            lines.append("")
            lines.append(payload)
        else:
            lines.append("")
        lines.append("")
    lines.append(f"--{boundary}--")
    lines.append("")
    return "\r\n".join(lines).encode("utf-8")


def _content_id(part: Message) -> str | None:
    value = part.get("Content-ID")
    if value is None:
        return None
    value = value.strip()
    if value.startswith("<") and value.endswith(">"):
        value = value[1:-1]
    if value.startswith("response-"):
        value = value[len("response-"):]
    return value


def _parse_http_part(payload: bytes) -> tuple[int, Any]:
    payload = payload.lstrip(b"\r\n")
    match = _STATUS_LINE.match(payload)
    if match is None:
        raise ValueError("part does not contain an HTTP response")
    split = _HEADER_END.search(payload)
    body = payload[split.end():] if split else b""
    return int(match.group(1)), decode_body(body)


def decode_batch(content: bytes, content_type: str) -> list[SubResponse]:
    """Parse a multipart/mixed response into per-id sub-responses."""
    if "multipart/" not in content_type.lower():
        raise ServerError(f"Unexpected batch response content type: {content_type or 'none'}", 502)
    message = message_from_bytes(b"Content-Type: " + content_type.encode("latin-1") + b"\r\n\r\n" + content)
    if not message.is_multipart():
        raise ServerError("Batch response could not be split into parts", 502)

    responses: list[SubResponse] = []
    for part in message.get_payload():
        part_id = _content_id(part)
        if part_id is None:
            logger.warning("Skipping batch response part without Content-ID")
            continue
        raw = part.get_payload(decode=True) or b""
        try:
            status, body = _parse_http_part(raw)
        except ValueError as exc:
            logger.warning("Malformed batch response part %s: %s", part_id, exc)
            status, body = MISSING_RESPONSE_STATUS, {"error": {"message": f"Malformed response part: {exc}"}}
        responses.append(SubResponse(id=part_id, status=status, body=body))
    return responses


class BatchClient:
    """Sends up to ``MAX_BATCH_SIZE`` sub-requests through an ApiClient in one call."""

    def __init__(self, api: ApiClient, boundary_factory: Callable[[], str] = _new_boundary):
        if not api.service.supports_batch:
            raise InvalidRequestError(
                f"Service '{api.service.name}' does not support batch requests. Use gmail, drive or calendar."
            )
        self.api = api
        self.boundary_factory = boundary_factory

    @staticmethod
    def validate(requests: list[BatchRequest]) -> tuple[list[BatchRequest], list[dict[str, Any]]]:
        """Split requests into sendable ones and per-id errors for unsupported methods."""
        if len(requests) > MAX_BATCH_SIZE:
            raise InvalidRequestError(
                f"Batch contains {len(requests)} requests; the maximum is {MAX_BATCH_SIZE}"
            )
        valid: list[BatchRequest] = []
        invalid: list[dict[str, Any]] = []
        for req in requests:
            if req.method not in METHODS:
                invalid.append({"id": req.id, "status": 400, "message": f"Unsupported method: {req.method}"})
            else:
                valid.append(req)
        return valid, invalid

    async def execute(self, requests: list[BatchRequest]) -> BatchResult:
        """Run the batch; raises ApiError only when the outer call fails."""
        valid, invalid = self.validate(requests)
        if not valid:
            return BatchResult.aggregate([], invalid)

        boundary = self.boundary_factory()
        content = encode_batch(valid, boundary, self.api.service.api_root)
        logger.debug("Sending batch of %d requests to %s", len(valid), self.api.service.batch_url)
        response = await self.api.send(
            "POST",
            self.api.service.batch_url,
            content=content,
            headers={"Content-Type": f"multipart/mixed; boundary={boundary}"},
        )
        parsed = decode_batch(response.content, response.headers.get("Content-Type", ""))

        by_id: dict[str, SubResponse] = {}
        for resp in parsed:
            by_id[resp.id] = resp

        ordered: list[SubResponse] = []
        for rid in dict.fromkeys(req.id for req in valid):
            resp = by_id.pop(rid, None)
            if resp is None:
                resp = SubResponse(rid, MISSING_RESPONSE_STATUS, {"error": {"message": MISSING_RESPONSE_MESSAGE}})
            ordered.append(resp)
        if by_id:
            logger.warning("Ignoring batch response parts with unknown ids: %s", ", ".join(sorted(by_id)))
        return BatchResult.aggregate(ordered, invalid)
