"""
Built-in request handlers.

    health.py   /health (liveness) and /ready (readiness)
    info.py     /api/info and the / index
"""

from .health import HealthHandler, HealthStatus, HealthCheck, check_tmp_writable
from .info import InfoHandler

__all__ = [
    "HealthHandler",
    "HealthStatus",
    "HealthCheck",
    "check_tmp_writable",
    "InfoHandler",
]
