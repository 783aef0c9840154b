"""
=============================================================================
DRAINSERVER - HTTP service with an orchestrator-friendly lifecycle
=============================================================================

A threaded HTTP/1.1 server whose process lifecycle is managed explicitly,
so that rolling deployments never drop a request:

    STARTING ──► READY ──► DRAINING ──► STOPPED
                   │           │
          /ready 200     /ready 503, new requests 503 + Retry-After,
                         in-flight requests finish, then exit 0
                         (or exit 1 when the grace period runs out)

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    drainserver/
    ├── __main__.py          CLI entry point (python -m drainserver)
    ├── server.py            HTTPServer and create_app()
    ├── config.py            ServerConfig
    ├── logging_config.py    JSON / text log setup
    ├── core/                sockets, workers, in-flight tracking, lifecycle
    ├── http/                request parsing, responses, routing
    ├── middleware/          pipeline, access log, drain guard
    └── handlers/            /health, /ready, /api/info, /

=============================================================================
QUICK START
=============================================================================

    from drainserver import ServerConfig, create_app
    from drainserver.http import ok

    app = create_app(ServerConfig(port=3000))

    @app.get("/hello")
    def hello(request):
        return ok({"message": "hi"})

    app.run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .core import LifecycleCoordinator, Phase, StartupError
from .server import HTTPServer, create_app

__all__ = [
    "HTTPServer",
    "ServerConfig",
    "LifecycleCoordinator",
    "Phase",
    "StartupError",
    "create_app",
    "__version__",
]
