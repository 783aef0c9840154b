"""
Request middleware.

    base.py      Middleware ABC and MiddlewarePipeline
    logging.py   access log with timing and X-Request-ID
    drain.py     in-flight tracking, 503 once draining
"""

from .base import Middleware, MiddlewarePipeline, NextHandler
from .drain import DrainGuardMiddleware, PROBE_PATHS
from .logging import LoggingMiddleware, RequestLog

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "DrainGuardMiddleware",
    "PROBE_PATHS",
    "LoggingMiddleware",
    "RequestLog",
]
