"""
=============================================================================
LISTENING SOCKET AND ACCEPT LOOP
=============================================================================

Binding and serving are separate steps. A bind failure is a startup error
the lifecycle coordinator must see before the service reports READY:

    listen()                    serve(handler)              shutdown()
    ────────                    ──────────────              ──────────
    socket() + options          while running:              running = False
    bind()   ── OSError ──►         accept()  (1s poll)         │
    listen(backlog)  fatal          handler(Connection)         ▼
                                                            loop exits,
                                                            socket closed

The socket keeps accepting while the service drains. Late requests get
an explicit 503 + Retry-After instead of a refused connection.

Socket options:

    SO_REUSEADDR   rebind right after a restart, without the TIME_WAIT error
    SO_REUSEPORT   a replacement process may bind while this one drains
    TCP_NODELAY    probe answers are small; don't hold them back

=============================================================================
"""

import logging
import socket
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 1.0


def _listening_socket(host: str, port: int, backlog: int) -> socket.socket:
    """Bound, listening socket. Raises OSError; nothing is left open then."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError:
        sock.close()
        raise
    return sock


class SocketServer:
    """
    Owns the listening socket.

        server = SocketServer(config)
        server.listen()                 # raises OSError on bind failure
        server.serve(handle_connection) # blocks until shutdown()
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self._socket: Optional[socket.socket] = None
        self._running = False

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (ip, port), or the configured one before listen()."""
        if self._socket is None:
            return (self.config.host, self.config.port)
        host, port = self._socket.getsockname()[:2]
        return (host, port)

    def listen(self) -> Tuple[str, int]:
        """
        Bind and listen. Not retried.

        Raises:
            OSError: Port in use, permission denied, bad address.
        """
        cfg = self.config
        try:
            self._socket = _listening_socket(cfg.host, cfg.port, cfg.backlog)
        except OSError as e:
            logger.error(f"Cannot bind {cfg.host}:{cfg.port}: {e}")
            raise

        self._running = True
        return self.address

    def serve(self, handle: Callable[[Connection], None]):
        """Accept until shutdown(); each Connection goes to ``handle``."""
        if self._socket is None:
            raise RuntimeError("listen() must be called before serve()")

        try:
            while self._running:
                try:
                    client, address = self._socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._running:
                        logger.error(f"Accept failed: {e}")
                    break

                handle(Connection(
                    client,
                    address,
                    buffer_size=self.config.buffer_size,
                    timeout=self.config.timeout,
                    keep_alive_timeout=self.config.keep_alive_timeout,
                    max_request_size=self.config.max_request_size,
                ))
        finally:
            self._socket.close()
            self._socket = None
            logger.debug("Accept loop stopped")

    def shutdown(self):
        """Stop accepting; the loop notices within one poll interval."""
        self._running = False
