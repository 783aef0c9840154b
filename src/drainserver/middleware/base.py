"""
=============================================================================
MIDDLEWARE PIPELINE
=============================================================================

Middleware wraps the router like layers of an onion. The first one added
is the outermost, so it sees every request first and every response last:

    pipeline.add(LoggingMiddleware())       # outermost
    pipeline.add(DrainGuardMiddleware(...)) # innermost, next to the router

        Request ──► Logging ──► DrainGuard ──► router.handle
        Response ◄── Logging ◄── DrainGuard ◄──┘

A middleware either calls ``next(request)`` to continue, or returns a
response of its own to short-circuit the chain (the drain guard's 503).

=============================================================================
"""

import functools
import logging
from abc import ABC, abstractmethod
from typing import Callable, List

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    One layer around the router.

        class StampMiddleware(Middleware):
            def __call__(self, request, next):
                response = next(request)
                response.set_header("X-Stamp", "1")
                return response
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """Return ``next(request)``, possibly altered, or a response of its own."""

    @property
    def name(self) -> str:
        return type(self).__name__


class MiddlewarePipeline:
    """
    Ordered middleware, first added outermost.

        handler = MiddlewarePipeline().use(a, b).wrap(router.handle)
        handler(request)                 # a → b → router.handle
    """

    def __init__(self):
        self._layers: List[Middleware] = []

    def __len__(self) -> int:
        return len(self._layers)

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        self._layers.append(middleware)
        logger.debug(f"Middleware added: {middleware.name}")
        return self

    def use(self, *middleware: Middleware) -> "MiddlewarePipeline":
        for layer in middleware:
            self.add(layer)
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """[A, B] around h gives A(B(h))."""
        for layer in reversed(self._layers):
            handler = functools.partial(layer, next=handler)
        return handler
