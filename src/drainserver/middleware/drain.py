"""
Drain guard middleware.

Sits innermost in the pipeline and is the single admission point for
in-flight tracking:

    tracker open     begin() → token → next(request) → end(token)
    tracker closed   503 + Retry-After + Connection: close

Probe paths are passed through untracked and are never refused, so the
orchestrator can still see /health (alive) and /ready (503, draining)
while the service drains.
"""

import logging
from typing import Iterable

from .base import Middleware, NextHandler
from ..core.inflight import InFlightTracker
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, service_unavailable


logger = logging.getLogger(__name__)

PROBE_PATHS = ("/health", "/ready")


class DrainGuardMiddleware(Middleware):
    """
    Counts admitted requests and refuses new ones once draining.

    Args:
        tracker: Shared with the server; closing it starts the refusal.
        retry_after: Seconds advertised in Retry-After on refusals.
        exempt_paths: Paths never tracked nor refused.
    """

    def __init__(
        self,
        tracker: InFlightTracker,
        retry_after: int = 120,
        exempt_paths: Iterable[str] = PROBE_PATHS,
    ):
        self.tracker = tracker
        self.retry_after = retry_after
        self.exempt_paths = frozenset(exempt_paths)

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if request.path in self.exempt_paths:
            return next(request)

        token = self.tracker.begin(request.label)
        if token is None:
            logger.debug(f"Refusing {request.label}: draining")
            response = service_unavailable(retry_after=self.retry_after)
            response.set_header("Connection", "close")
            return response

        try:
            return next(request)
        finally:
            self.tracker.end(token)
