"""
=============================================================================
HTTP SERVER
=============================================================================

Wires the components together and is the drain target driven by the
LifecycleCoordinator:

    ┌──────────────────────────────────────────────────────────────────┐
    │ HTTPServer                                                       │
    │                                                                  │
    │   SocketServer ──accept──► ThreadPool ──► _process_connection    │
    │                                               │                  │
    │                        user middleware (logging, ...)            │
    │                                               │                  │
    │                        DrainGuardMiddleware ◄─┼─ InFlightTracker │
    │                                               │                  │
    │                                         Router.handle            │
    │                                                                  │
    │   LifecycleCoordinator ── listen() / drain() / in_flight() ──►   │
    └──────────────────────────────────────────────────────────────────┘

=============================================================================
REQUEST OUTCOMES
=============================================================================

    parse error          400 / 405 / 413 / 505, connection closed
    first read timeout   408, connection closed
    handler raises       500 (exception text only in development)
    draining             503 + Retry-After, connection closed
    worker fault         escapes to the coordinator → exit 1

=============================================================================
"""

import logging
import threading
from typing import Callable, Optional, List, Tuple

from . import __version__
from .config import ServerConfig
from .core import (
    Connection,
    ConnectionState,
    InFlightTracker,
    LifecycleCoordinator,
    Phase,
    SocketServer,
    ThreadPool,
)
from .handlers import HealthHandler, InfoHandler
from .http import (
    HTTPRequest,
    HTTPResponse,
    HTTPParseError,
    HTTPStatus,
    RequestParser,
    ResponseBuilder,
    Router,
    error_response,
    internal_error,
)
from .middleware import DrainGuardMiddleware, Middleware, MiddlewarePipeline


logger = logging.getLogger(__name__)


class HTTPServer:
    """
    HTTP/1.1 server with a managed lifecycle.

        server = HTTPServer(ServerConfig(port=3000))

        @server.get("/hello")
        def hello(request):
            return ok({"message": "hi"})

        server.use(LoggingMiddleware())
        exit_code = server.run()      # blocks until STOPPED

    Args:
        config: Validated on construction.
        exit_func: Passed to the coordinator. The default terminates the
                   process; with a recorder, run() returns the exit code.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        exit_func: Optional[Callable[[int], None]] = None,
    ):
        self.config = config or ServerConfig()
        self.config.validate()

        self._socket_server = SocketServer(self.config)
        self._tracker = InFlightTracker()

        self._coordinator = LifecycleCoordinator(
            self,
            grace_period=self.config.grace_period,
            exit_func=exit_func,
        )
        self._coordinator.add_stop_listener(self._socket_server.shutdown)

        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
            on_error=self._on_worker_fault,
        )

        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._router = Router()
        self._middleware = MiddlewarePipeline()
        self._drain_guard = DrainGuardMiddleware(
            self._tracker,
            retry_after=self.config.retry_after,
        )
        self._handler: Optional[Callable[[HTTPRequest], HTTPResponse]] = None

    # =========================================================================
    # APPLICATION SETUP
    # =========================================================================

    def use(self, middleware: Middleware) -> "HTTPServer":
        """
        Add middleware. Runs outside the drain guard, so requests refused
        during drain still pass through it (and get access-logged).
        """
        self._middleware.add(middleware)
        self._handler = None
        return self

    @property
    def router(self) -> Router:
        return self._router

    @property
    def coordinator(self) -> LifecycleCoordinator:
        return self._coordinator

    @property
    def tracker(self) -> InFlightTracker:
        return self._tracker

    @property
    def address(self) -> Tuple[str, int]:
        return self._socket_server.address

    def route(self, path: str, method: Optional[str] = None, **kwargs):
        return self._router.route(path, method, **kwargs)

    def get(self, path: str, **kwargs):
        return self._router.get(path, **kwargs)

    def post(self, path: str, **kwargs):
        return self._router.post(path, **kwargs)

    def put(self, path: str, **kwargs):
        return self._router.put(path, **kwargs)

    def delete(self, path: str, **kwargs):
        return self._router.delete(path, **kwargs)

    def _build_handler(self) -> Callable[[HTTPRequest], HTTPResponse]:
        guarded = MiddlewarePipeline().add(self._drain_guard).wrap(self._router.handle)
        return self._middleware.wrap(guarded)

    # =========================================================================
    # DRAIN TARGET
    # =========================================================================

    def listen(self) -> Tuple[str, int]:
        """Bind the listening socket. Raises OSError on failure."""
        return self._socket_server.listen()

    def drain(self, on_complete: Callable[[], None]) -> None:
        """
        Stop admitting requests and call ``on_complete`` once idle.

        Returns immediately; the wait happens on a daemon thread.
        """
        remaining = self._tracker.close()
        logger.info(
            f"Draining, {remaining} request(s) in flight",
            extra={"in_flight": remaining},
        )

        threading.Thread(
            target=self._wait_drained,
            args=(on_complete,),
            name="drain-waiter",
            daemon=True,
        ).start()

    def _wait_drained(self, on_complete: Callable[[], None]) -> None:
        self._tracker.wait_idle()
        on_complete()

    def in_flight(self) -> List[str]:
        return self._tracker.snapshot()

    # =========================================================================
    # RUN
    # =========================================================================

    def run(self) -> int:
        """
        Start serving and block until the process is STOPPED.

        Signal and fault hooks are only installed from the main thread;
        elsewhere (tests) shutdown is triggered through the coordinator.

        Returns:
            The exit code, when exit_func returned instead of exiting.

        Raises:
            StartupError: If the listening socket could not be bound.
        """
        self._handler = self._build_handler()
        on_main_thread = threading.current_thread() is threading.main_thread()

        if on_main_thread:
            self._coordinator.install_signal_handlers()
            self._coordinator.install_fault_handlers()

        self._thread_pool.start()

        try:
            self._coordinator.start()
            logger.info(
                f"{self.config.service_name} {__version__} serving "
                f"({self.config.environment})",
                extra={
                    "port": self.address[1],
                    "environment": self.config.environment,
                    "workers": f"{self.config.min_workers}-{self.config.max_workers}",
                    "grace_period": self.config.grace_period,
                },
            )

            try:
                self._socket_server.serve(self._handle_connection)
            except Exception as e:
                self._coordinator.on_fatal_fault(e, "accept loop")

            if self._coordinator.phase is not Phase.STOPPED:
                self._coordinator.on_fatal_fault(
                    RuntimeError("Accept loop exited unexpectedly"), "accept loop"
                )
            self._coordinator.wait_stopped()
        finally:
            self._thread_pool.shutdown(wait=False)
            if on_main_thread:
                self._coordinator.restore_fault_handlers()
                self._coordinator.restore_signal_handlers()

        return self._coordinator.exit_code

    def _on_worker_fault(self, exc: BaseException) -> None:
        self._coordinator.on_fatal_fault(exc, "worker thread")

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Hand an accepted connection to the pool (called by SocketServer)."""
        try:
            submitted = self._thread_pool.submit(
                self._process_connection,
                conn,
                label=f"connection {conn.id}",
                max_wait=self.config.timeout,
            )
        except RuntimeError:
            # Pool already shut down; the process is stopping
            conn.close()
            return

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()

    def handle_request(self, request: HTTPRequest) -> HTTPResponse:
        """
        Run one request through middleware and router.

        Handler exceptions become error responses here; nothing a route
        handler raises reaches the worker thread.
        """
        if self._handler is None:
            self._handler = self._build_handler()

        try:
            return self._handler(request)
        except HTTPParseError as e:
            return error_response(HTTPStatus(e.status_code), str(e))
        except Exception as e:
            logger.exception(f"Handler error for {request.method} {request.path}: {e}")
            message = str(e) if self.config.is_development else "An error occurred"
            return internal_error(message)

    def _process_connection(self, conn: Connection):
        """Keep-alive loop for one connection (runs in a worker thread)."""
        with conn:
            while True:
                try:
                    raw_request = conn.read_request()
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break
                except ValueError as e:
                    self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, str(e))
                    break
                except OSError as e:
                    logger.debug(f"[{conn.id}] Read failed: {e}")
                    break

                if raw_request is None:
                    break

                try:
                    request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    self._send_error(conn, HTTPStatus(e.status_code), str(e))
                    break

                conn.state = ConnectionState.PROCESSING

                with self._tracker.hold():
                    response = self.handle_request(request)
                    keep_alive = self._keep_alive(request, response)
                    sent = conn.send_response(response.to_bytes(self.config.server_name))

                if not sent or not keep_alive:
                    break

                conn.set_keep_alive()

    def _keep_alive(self, request: HTTPRequest, response: HTTPResponse) -> bool:
        """Decide keep-alive and set the Connection headers to match."""
        keep_alive = (
            self.config.keep_alive
            and request.is_keep_alive
            and not self._tracker.closed
            and response.headers.get("Connection", "").lower() != "close"
        )

        if keep_alive:
            response.headers.setdefault("Connection", "keep-alive")
            response.headers.setdefault(
                "Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}"
            )
        else:
            response.headers["Connection"] = "close"

        return keep_alive

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str):
        """Error response for failures before the handler runs."""
        response = (ResponseBuilder()
            .status(status)
            .json({"error": message})
            .close_connection()
            .build())
        conn.send_response(response.to_bytes(self.config.server_name))


def create_app(
    config: Optional[ServerConfig] = None,
    exit_func: Optional[Callable[[int], None]] = None,
) -> HTTPServer:
    """
    Server with the built-in routes registered:

        GET /health     liveness
        GET /ready      readiness
        GET /api/info   service info
        GET /           index
    """
    server = HTTPServer(config, exit_func=exit_func)
    config = server.config

    health = HealthHandler(
        server.coordinator,
        environment=config.environment,
        version=__version__,
    )
    info = InfoHandler(config.service_name, __version__, config.environment)

    server.router.add_route("/health", health.liveness, "GET", name="health")
    server.router.add_route("/ready", health.readiness, "GET", name="ready")
    server.router.add_route("/api/info", info.info, "GET", name="info")
    server.router.add_route("/", info.index, "GET", name="index")

    return server
