"""
Client connection wrapper.

A Connection owns one accepted client socket and cuts the TCP byte stream
into whole HTTP requests:

    recv() ──► buffer ──► head complete (\\r\\n\\r\\n)? ──► + Content-Length
                                                              │
                                           one request ◄──────┘
                                           (bytes after it stay buffered)

The first request on a connection must arrive within ``timeout``. A
keep-alive connection waiting for its next request only gets
``keep_alive_timeout``, so an idle client cannot hold a worker for long
once the service starts draining.
"""

import logging
import socket
import time
import uuid
from enum import Enum
from typing import Optional, Tuple

from ..http.request import parse_headers


logger = logging.getLogger(__name__)

HEAD_END = b"\r\n\r\n"


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSED = "closed"


class Connection:
    """
    An accepted client connection.

    Args:
        socket: The accepted client socket.
        address: Client (ip, port).
        buffer_size: recv() chunk size.
        timeout: Read/write timeout; also the wait for the first request.
        keep_alive_timeout: Wait for each later request.
        max_request_size: Requests beyond this raise ValueError.
    """

    def __init__(
        self,
        socket: socket.socket,
        address: Tuple[str, int],
        buffer_size: int = 8192,
        timeout: Optional[float] = 30.0,
        keep_alive_timeout: float = 5.0,
        max_request_size: int = 10 * 1024 * 1024,
    ):
        self.socket = socket
        self.address = address
        self.buffer_size = buffer_size
        self.timeout = timeout
        self.keep_alive_timeout = keep_alive_timeout
        self.max_request_size = max_request_size

        self.id = uuid.uuid4().hex[:8]
        self.state = ConnectionState.NEW
        self.accepted_at = time.monotonic()
        self.requests_read = 0
        self._buffer = b""

        self.socket.settimeout(timeout)

    def __repr__(self):
        return f"<Connection {self.id} {self.address[0]}:{self.address[1]} {self.state.value}>"

    def read_request(self) -> Optional[bytes]:
        """
        Read the next complete request.

        Returns:
            The raw request, or None when the client closed the connection
            or a keep-alive wait expired.

        Raises:
            TimeoutError: The first request did not arrive in time.
            ValueError: The request is larger than max_request_size.
        """
        self.state = ConnectionState.READING
        waiting_for_next = self.requests_read > 0
        if waiting_for_next:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            if not self._fill_until(lambda: HEAD_END in self._buffer):
                return None

            head_length = self._buffer.index(HEAD_END) + len(HEAD_END)
            total = head_length + self._declared_length(self._buffer[:head_length])
            if total > self.max_request_size:
                raise ValueError(f"Request too large: {total} bytes")

            # A short body is left for the parser to reject
            self._fill_until(lambda: len(self._buffer) >= total)
        except socket.timeout:
            if waiting_for_next:
                logger.debug(f"[{self.id}] Keep-alive wait expired")
                return None
            raise TimeoutError("Request read timeout")
        finally:
            self.socket.settimeout(self.timeout)

        request, self._buffer = self._buffer[:total], self._buffer[total:]
        self.requests_read += 1
        return request

    def _fill_until(self, done) -> bool:
        """recv() into the buffer until ``done()``; False on end of stream."""
        while not done():
            try:
                chunk = self.socket.recv(self.buffer_size)
            except (ConnectionResetError, BrokenPipeError):
                chunk = b""
            if not chunk:
                return False
            self._buffer += chunk
            if len(self._buffer) > self.max_request_size:
                raise ValueError(f"Request too large: {len(self._buffer)} bytes")
        return True

    @staticmethod
    def _declared_length(head: bytes) -> int:
        """Content-Length from the raw head; 0 when absent or not a number."""
        lines = head.decode("utf-8", errors="replace").split("\r\n")[1:]
        value = parse_headers(lines).get("content-length", "0")
        return int(value) if value.isdigit() else 0

    def send_response(self, data: bytes) -> bool:
        """sendall() the serialized response; False if the client is gone."""
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False
        return True

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def close(self):
        """Half-close, discard unread input, release the socket. Idempotent."""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_WR)
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass  # Peer already gone
        finally:
            self.socket.close()

        logger.debug(
            f"[{self.id}] Closed after {self.requests_read} request(s), "
            f"{time.monotonic() - self.accepted_at:.2f}s"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
