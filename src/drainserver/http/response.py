"""
=============================================================================
HTTP RESPONSE BUILDING
=============================================================================

Every answer the service gives, from a readiness probe to a 503 during
drain, is an HTTPResponse serialized by ``to_bytes()``:

    HTTP/1.1 503 Service Unavailable\r\n     ← status line
    Content-Type: application/json\r\n
    Retry-After: 120\r\n                     ← drain retry hint
    Connection: close\r\n
    Content-Length: 71\r\n                   ← filled in
    Date: Thu, 01 Jan 2026 12:00:00 GMT\r\n  ← filled in
    Server: drainserver/1.0\r\n              ← filled in
    \r\n
    {"error": "Service Unavailable", "message": "Service is shutting down"}

Handlers build responses with ResponseBuilder, or with the helpers at the
bottom of this module for the shapes the service answers with.

=============================================================================
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, List, Optional, Union

from .status_codes import HTTPStatus


JSON_TYPE = "application/json; charset=utf-8"
TEXT_TYPE = "text/plain; charset=utf-8"


def format_http_date(moment: datetime) -> str:
    """RFC 7231 HTTP-date, e.g. "Thu, 01 Jan 2026 12:00:00 GMT"."""
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def iso_timestamp() -> str:
    """UTC now in ISO 8601 with a Z suffix; every JSON body uses it."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class HTTPResponse:
    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {self.status.value} {self.status.phrase}"

    @property
    def json(self) -> Any:
        """Body decoded as JSON; None when empty."""
        return json.loads(self.body) if self.body else None

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def to_bytes(self, server_name: str = "drainserver/1.0") -> bytes:
        """
        Wire form of the response.

        Content-Length, Date and Server are filled in unless already set.
        """
        headers = dict(self.headers)
        headers.setdefault("Content-Length", str(len(self.body)))
        headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        headers.setdefault("Server", server_name)

        head = [self.status_line, *(f"{name}: {value}" for name, value in headers.items())]
        return ("\r\n".join(head) + "\r\n\r\n").encode("utf-8") + self.body


class ResponseBuilder:
    """
    Chainable response construction.

        response = (ResponseBuilder()
            .status(HTTPStatus.SERVICE_UNAVAILABLE)
            .retry_after(120)
            .json({"error": "Service Unavailable"})
            .build())
    """

    def __init__(self):
        self._response = HTTPResponse()

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._response.status = HTTPStatus(status)
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._response.headers[name] = value
        return self

    def raw(self, body: bytes, content_type: Optional[str] = None) -> "ResponseBuilder":
        self._response.body = body
        if content_type:
            self.header("Content-Type", content_type)
        return self

    def text(self, text: str, content_type: str = TEXT_TYPE) -> "ResponseBuilder":
        return self.raw(text.encode("utf-8"), content_type)

    def json(self, data: Any) -> "ResponseBuilder":
        """JSON body; values json can't encode (datetimes, enums) go through str()."""
        encoded = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
        return self.raw(encoded, JSON_TYPE)

    def no_cache(self) -> "ResponseBuilder":
        """Probe answers must never come from a cache."""
        self.header("Cache-Control", "no-store, no-cache, must-revalidate")
        self.header("Pragma", "no-cache")
        return self.header("Expires", "0")

    def retry_after(self, seconds: int) -> "ResponseBuilder":
        return self.header("Retry-After", str(int(seconds)))

    def close_connection(self) -> "ResponseBuilder":
        return self.header("Connection", "close")

    def build(self) -> HTTPResponse:
        return self._response


# =============================================================================
# COMMON RESPONSES
# =============================================================================

def ok(body: Union[str, bytes, dict, list] = "", content_type: Optional[str] = None) -> HTTPResponse:
    """200. dict and list bodies become JSON, str becomes text/plain."""
    builder = ResponseBuilder()
    if isinstance(body, (dict, list)):
        builder.json(body)
    elif isinstance(body, str):
        builder.text(body, content_type or TEXT_TYPE)
    else:
        builder.raw(body, content_type)
    return builder.build()


def error_response(status: HTTPStatus, message: str) -> HTTPResponse:
    return ResponseBuilder().status(status).json({"error": message}).build()


def not_found(path: str) -> HTTPResponse:
    return (ResponseBuilder()
        .status(HTTPStatus.NOT_FOUND)
        .json({"error": "Not Found", "path": path})
        .build())


def method_not_allowed(allowed: List[str]) -> HTTPResponse:
    return (ResponseBuilder()
        .status(HTTPStatus.METHOD_NOT_ALLOWED)
        .header("Allow", ", ".join(allowed))
        .json({"error": "Method Not Allowed", "allowed": allowed})
        .build())


def internal_error(message: str = "An error occurred") -> HTTPResponse:
    """500. Outside development the caller keeps ``message`` generic."""
    return (ResponseBuilder()
        .status(HTTPStatus.INTERNAL_SERVER_ERROR)
        .json({"error": "Internal Server Error", "message": message})
        .build())


def service_unavailable(
    message: str = "Service is shutting down",
    retry_after: Optional[int] = None,
) -> HTTPResponse:
    """503, with Retry-After when ``retry_after`` is given."""
    builder = (ResponseBuilder()
        .status(HTTPStatus.SERVICE_UNAVAILABLE)
        .json({"error": "Service Unavailable", "message": message}))
    if retry_after is not None:
        builder.retry_after(retry_after)
    return builder.build()
