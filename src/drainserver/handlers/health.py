"""
Probe endpoints.

=============================================================================
LIVENESS vs READINESS
=============================================================================

    /health   "Should this process be restarted?"
              200 while the process is alive: STARTING, READY and DRAINING.
              503 only if a self-check fails or the process has STOPPED.

    /ready    "Should traffic be routed here?"
              200 only while READY. Flips to 503 the moment a termination
              signal arrives, so the load balancer stops routing before
              the server stops admitting.

Both answers come from the LifecycleCoordinator; this module only turns
them into HTTP. Responses are never cacheable.

=============================================================================
"""

import os
import tempfile
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

from ..core.lifecycle import LifecycleCoordinator
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, iso_timestamp
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    """
    Result of one self-check.

        def check_cache():
            if cache.ping():
                return HealthStatus(healthy=True)
            return HealthStatus(healthy=False, message="cache unreachable")
    """

    healthy: bool
    message: str = "OK"
    details: Dict[str, Any] = field(default_factory=dict)


HealthCheck = Callable[[], HealthStatus]


def check_tmp_writable() -> HealthStatus:
    """The temp directory must be writable; a read-only or full disk fails it."""
    path = tempfile.gettempdir()
    if os.access(path, os.W_OK):
        return HealthStatus(healthy=True)
    return HealthStatus(healthy=False, message=f"Temp directory {path} is not writable")


class HealthHandler:
    """
    Liveness and readiness endpoints backed by the lifecycle coordinator.

        health = HealthHandler(coordinator, environment="production", version="1.0.0")
        health.add_check("cache", check_cache)

        router.get("/health", health.liveness)
        router.get("/ready", health.readiness)
    """

    def __init__(
        self,
        coordinator: LifecycleCoordinator,
        environment: str = "development",
        version: str = "",
    ):
        self.coordinator = coordinator
        self.environment = environment
        self.version = version
        self._checks: Dict[str, HealthCheck] = {"tmp": check_tmp_writable}

    def add_check(self, name: str, check: HealthCheck) -> "HealthHandler":
        """Register a self-check run on every /health request. Chainable."""
        self._checks[name] = check
        return self

    def _run_checks(self) -> str:
        """Run every check; return the first failure message, or "" if all pass."""
        for name, check in self._checks.items():
            try:
                status = check()
            except Exception as e:
                logger.warning(f"Health check '{name}' raised: {e}")
                return f"{name}: {e}"

            if not status.healthy:
                return f"{name}: {status.message}"

        return ""

    def liveness(self, request: HTTPRequest) -> HTTPResponse:
        """GET /health"""
        report = self.coordinator.report_liveness()

        error = "" if report.alive else "Process has stopped"
        if not error:
            error = self._run_checks()

        if error:
            logger.warning(f"Liveness check failed: {error}")
            return self._respond(HTTPStatus.SERVICE_UNAVAILABLE, {
                "status": "unhealthy",
                "error": error,
                "timestamp": iso_timestamp(),
                "phase": report.phase.value,
            })

        body = {
            "status": "healthy",
            "timestamp": iso_timestamp(),
            "uptime": round(report.uptime, 3),
            "phase": report.phase.value,
            "environment": self.environment,
            "version": self.version,
        }
        body.update(report.diagnostics)
        return self._respond(HTTPStatus.OK, body)

    def readiness(self, request: HTTPRequest) -> HTTPResponse:
        """GET /ready"""
        if self.coordinator.report_readiness():
            return self._respond(HTTPStatus.OK, {
                "ready": True,
                "timestamp": iso_timestamp(),
            })

        return self._respond(HTTPStatus.SERVICE_UNAVAILABLE, {
            "ready": False,
            "phase": self.coordinator.phase.value,
            "timestamp": iso_timestamp(),
        })

    @staticmethod
    def _respond(status: HTTPStatus, body: Dict[str, Any]) -> HTTPResponse:
        return ResponseBuilder().status(status).json(body).no_cache().build()
