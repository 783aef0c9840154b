"""
Access logging middleware.

One record per request on the ``drainserver.access`` logger. The message
is a human readable summary; the fields ride along as ``extra`` so the
JSON formatter emits them as top-level keys:

    {"level": "INFO", "logger": "drainserver.access",
     "message": "GET /api/info 200 0.41ms", "request_id": "3f2a9c1e",
     "method": "GET", "path": "/api/info", "status_code": 200, ...}

Probe endpoints are polled every few seconds by the orchestrator, so they
are skipped by default.
"""

import time
import uuid
import logging
from dataclasses import dataclass, asdict
from typing import Iterable, Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger("drainserver.access")

DEFAULT_SKIP_PATHS = ("/health", "/ready")


@dataclass
class RequestLog:
    """Structured access log entry."""

    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float

    def to_dict(self) -> dict:
        entry = asdict(self)
        entry["duration_ms"] = round(self.duration_ms, 2)
        return entry

    def to_text(self) -> str:
        return (
            f"{self.client_ip} \"{self.method} {self.path}\" "
            f"{self.status_code} {self.content_length} {self.duration_ms:.2f}ms"
        )


class LoggingMiddleware(Middleware):
    """
    Logs each request with timing and tags the response with X-Request-ID.

    Should be first in the pipeline so that requests short-circuited by
    later middleware (drain 503s included) are logged too.
    """

    def __init__(
        self,
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = DEFAULT_SKIP_PATHS,
    ):
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or ())

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = request.get_header("x-request-id") or uuid.uuid4().hex[:8]
        start_time = time.perf_counter()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)",
                extra={"request_id": request_id, "method": request.method, "path": request.path},
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        if self.include_request_id:
            response.set_header("X-Request-ID", request_id)

        if request.path in self.skip_paths:
            return response

        entry = RequestLog(
            request_id=request_id,
            method=request.method,
            path=request.path,
            query=request.query_string,
            client_ip=request.client_address[0] or "-",
            user_agent=request.user_agent or "-",
            status_code=int(response.status),
            content_length=len(response.body),
            duration_ms=duration_ms,
        )
        logger.log(self.log_level, entry.to_text(), extra=entry.to_dict())

        return response
