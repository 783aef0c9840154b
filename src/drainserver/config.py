"""
Service configuration.

Values come from, highest priority first:

    1. command-line flags        drainserver --port 8080 --grace-period 20
    2. environment variables     HTTP_PORT=8080 SHUTDOWN_GRACE_PERIOD=20
    3. the defaults below

The config is built once at startup and frozen; the listening port, the
grace period and the environment label cannot change while serving.

Keep ``grace_period`` below the orchestrator's own kill timeout
(``terminationGracePeriodSeconds``, ``docker stop -t``). Otherwise SIGKILL
lands before the deadline timer can log a forced shutdown:

    SIGTERM ──► drain ... grace_period ... forced exit(1)
                                                    │
    orchestrator: ... terminationGracePeriodSeconds ┴── SIGKILL
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


LOG_FORMATS = ("json", "text")


@dataclass(frozen=True)
class ServerConfig:
    """Every tunable of the service. Check with validate() before use."""

    # Network

    host: str = "127.0.0.1"
    """Bind address. Use "0.0.0.0" inside a container."""

    port: int = 3000

    backlog: int = 128
    """listen() backlog."""

    buffer_size: int = 8192
    """recv() chunk size in bytes."""

    timeout: Optional[float] = 30.0
    """Seconds a new connection has to send its first request."""

    # HTTP

    keep_alive: bool = True

    keep_alive_timeout: float = 5.0
    """Seconds an idle keep-alive connection waits for its next request."""

    max_request_size: int = 10 * 1024 * 1024
    """Requests larger than this are answered 413."""

    # Workers

    min_workers: int = 4
    """Threads started with the server."""

    max_workers: int = 16
    """Ceiling the pool may grow to while every worker is busy."""

    # Shutdown

    grace_period: float = 30.0
    """
    Seconds in-flight requests get after SIGTERM/SIGINT. When they run
    out the process exits with status 1.
    """

    retry_after: int = 120
    """Retry-After seconds on requests refused while draining."""

    # Identity and logging

    environment: str = "development"
    """
    Deployment label. In development, 500 responses carry the exception
    text; elsewhere they say "An error occurred".
    """

    service_name: str = "drainserver"
    """Stamped on every JSON log line."""

    server_name: str = "drainserver/1.0"
    """Server response header."""

    log_level: str = "INFO"

    log_format: str = "json"
    """Either "json" (one object per line) or "text"."""

    @property
    def is_development(self) -> bool:
        """True when running with the development environment label."""
        return self.environment.lower() == "development"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Build a config from environment variables; unset ones keep defaults.

        HTTP_HOST               Server host (default: 127.0.0.1)
        HTTP_PORT / PORT        Server port (default: 3000)
        HTTP_WORKERS            Max worker threads (default: 16)
        HTTP_TIMEOUT            Request timeout in seconds (default: 30)
        SHUTDOWN_GRACE_PERIOD   Drain deadline in seconds (default: 30)
        SHUTDOWN_RETRY_AFTER    Retry-After seconds during drain (default: 120)
        APP_ENV                 Environment label (default: development)
        LOG_LEVEL               Logging level (default: INFO)
        LOG_FORMAT              json or text (default: json)
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        port = env.get("HTTP_PORT") or env.get("PORT") or str(defaults.port)
        max_workers = int(env.get("HTTP_WORKERS", defaults.max_workers))

        return cls(
            host=env.get("HTTP_HOST", defaults.host),
            port=int(port),
            timeout=float(env.get("HTTP_TIMEOUT", defaults.timeout)),
            min_workers=min(defaults.min_workers, max_workers),
            max_workers=max_workers,
            grace_period=float(env.get("SHUTDOWN_GRACE_PERIOD", defaults.grace_period)),
            retry_after=int(env.get("SHUTDOWN_RETRY_AFTER", defaults.retry_after)),
            environment=env.get("APP_ENV", defaults.environment),
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
            log_format=env.get("LOG_FORMAT", defaults.log_format).lower(),
        )

    def validate(self) -> None:
        """Raise ValueError for the first setting that is out of range."""
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 1-65535.")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.grace_period <= 0:
            raise ValueError("grace_period must be > 0")

        if self.retry_after < 0:
            raise ValueError("retry_after must be >= 0")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
