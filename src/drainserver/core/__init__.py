"""
Server core: sockets, worker threads, and the process lifecycle.

    socket_server.py   listening socket and accept loop
    connection.py      per-client socket wrapper, request framing
    thread_pool.py     worker threads for connection handling
    inflight.py        admitted-request accounting for drain
    lifecycle.py       phases, probes, signals, bounded shutdown
"""

from .connection import Connection, ConnectionState
from .inflight import InFlightRequest, InFlightTracker
from .lifecycle import (
    EXIT_FAILURE,
    EXIT_OK,
    LifecycleCoordinator,
    LivenessReport,
    Phase,
    ProcessState,
    StartupError,
)
from .socket_server import SocketServer
from .thread_pool import ThreadPool

__all__ = [
    "Connection",
    "ConnectionState",
    "InFlightRequest",
    "InFlightTracker",
    "EXIT_FAILURE",
    "EXIT_OK",
    "LifecycleCoordinator",
    "LivenessReport",
    "Phase",
    "ProcessState",
    "StartupError",
    "SocketServer",
    "ThreadPool",
]
