"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes read by a Connection into an HTTPRequest.

    GET /ready?verbose=1 HTTP/1.1\r\n       ← request line
    Host: localhost:3000\r\n                ← headers
    User-Agent: kube-probe/1.29\r\n
    \r\n                                    ← blank line
    <body>                                  ← Content-Length bytes

Orchestrator probes are tiny GET requests, but the parser stays strict:
a malformed request is a client error (4xx), never a process-level fault.

    400 Bad Request                  malformed request line, headers, path
    405 Method Not Allowed           unknown method token
    413 Payload Too Large            request exceeds max_request_size
    505 HTTP Version Not Supported   anything but HTTP/1.0 or HTTP/1.1

=============================================================================
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlencode, urlsplit


METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})
VERSIONS = ("HTTP/1.0", "HTTP/1.1")

_UNSET = object()


class HTTPParseError(Exception):
    """A request the server refuses to handle; carries the status to send."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Header names are lowercase. ``path`` is decoded and never carries the
    query string; ``query_params`` maps each name to all of its values.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""
    path_params: Dict[str, str] = field(default_factory=dict)
    client_address: Tuple[str, int] = ("", 0)

    _json: Any = field(default=_UNSET, repr=False)

    @property
    def label(self) -> str:
        """Method and path, e.g. "GET /ready"; names the request in logs."""
        return f"{self.method} {self.path}"

    @property
    def query_string(self) -> str:
        return urlencode(self.query_params, doseq=True)

    @property
    def content_type(self) -> Optional[str]:
        """Media type without parameters, lowercase."""
        media_type = self.headers.get("content-type", "").partition(";")[0]
        return media_type.strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def json(self) -> Any:
        """
        Body decoded as JSON, None for an empty body.

        Raises:
            HTTPParseError: If the body is not valid JSON.
        """
        if self._json is _UNSET:
            if not self.body:
                return None
            try:
                self._json = json.loads(self.body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise HTTPParseError(f"Invalid JSON body: {e}")
        return self._json

    @property
    def is_keep_alive(self) -> bool:
        """HTTP/1.1 keeps alive unless told to close; HTTP/1.0 the reverse."""
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.0":
            return connection == "keep-alive"
        return connection != "close"

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name)
        return values[0] if values else default


def parse_request_line(line: str) -> Tuple[str, str, Dict[str, List[str]], str]:
    """
    "GET /path?query HTTP/1.1" → (method, path, query_params, version).

    Raises:
        HTTPParseError: 400, 405 or 505.
    """
    parts = line.split(" ")
    if len(parts) != 3 or not all(parts):
        raise HTTPParseError(f"Invalid request line: {line[:100]}")

    method, target, version = parts

    if not version.startswith("HTTP/"):
        raise HTTPParseError(f"Invalid request line: {line[:100]}")
    if version not in VERSIONS:
        raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)
    if method not in METHODS:
        raise HTTPParseError(f"Invalid method: {method}", status_code=405)

    url = urlsplit(target)
    path = unquote(url.path) or "/"
    if ".." in path:
        raise HTTPParseError("Invalid path: contains ..")

    return method, path, parse_qs(url.query, keep_blank_values=True), version


def parse_headers(lines: List[str]) -> Dict[str, str]:
    """
    Header lines → dict with lowercase names.

    Repeated headers are joined with ", "; lines without a colon are
    ignored.
    """
    headers: Dict[str, str] = {}
    for line in lines:
        name, sep, value = line.partition(":")
        name = name.strip().lower()
        if not sep or not name:
            continue
        value = value.strip()
        headers[name] = f"{headers[name]}, {value}" if name in headers else value
    return headers


class RequestParser:
    """
    Raw request bytes → HTTPRequest.

    Args:
        max_request_size: Larger requests are refused with 413.
    """

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        head, sep, body = data.partition(b"\r\n\r\n")
        if not sep:
            raise HTTPParseError("Incomplete request: no header terminator")

        request_line, *header_lines = head.decode("utf-8", errors="replace").split("\r\n")
        method, path, query_params, version = parse_request_line(request_line)
        headers = parse_headers(header_lines)

        length = self._content_length(headers)
        if len(body) < length:
            raise HTTPParseError(f"Incomplete body: expected {length} bytes, got {len(body)}")

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:length],
            client_address=client_address,
        )

    @staticmethod
    def _content_length(headers: Dict[str, str]) -> int:
        raw = headers.get("content-length", "0")
        if not raw.isdigit():
            raise HTTPParseError(f"Invalid Content-Length header: {raw!r}")
        return int(raw)
