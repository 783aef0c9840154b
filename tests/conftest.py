"""
pytest configuration and fixtures.
"""

import http.client
import json
import socket
import threading
import time
from typing import Callable, Dict, Generator, List, Optional, Tuple

import pytest

from drainserver import HTTPServer, ServerConfig, create_app
from drainserver.core import LifecycleCoordinator
from drainserver.http import ok


# =============================================================================
# RAW REQUESTS
# =============================================================================

@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:3000\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "probe", "interval": 5}'
    return (
        b"POST /api/checks HTTP/1.1\r\n"
        b"Host: localhost:3000\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def free_port() -> int:
    """A port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# =============================================================================
# LIFECYCLE TEST DOUBLES
# =============================================================================

class RecordingExit:
    """exit_func that records the status instead of ending the process."""

    def __init__(self):
        self.codes: List[int] = []
        self.called = threading.Event()

    def __call__(self, code: int) -> None:
        self.codes.append(code)
        self.called.set()

    def wait(self, timeout: float = 5.0) -> Optional[int]:
        if not self.called.wait(timeout):
            return None
        return self.codes[0]


class FakeServer:
    """Drain target that records what the coordinator asks of it."""

    def __init__(self, bind_error: Optional[OSError] = None, in_flight: Optional[List[str]] = None):
        self.bind_error = bind_error
        self.requests = list(in_flight or [])
        self.listen_calls = 0
        self.drain_calls = 0
        self.on_complete: Optional[Callable[[], None]] = None

    def listen(self) -> Tuple[str, int]:
        self.listen_calls += 1
        if self.bind_error is not None:
            raise self.bind_error
        return ("127.0.0.1", 3000)

    def drain(self, on_complete: Callable[[], None]) -> None:
        self.drain_calls += 1
        self.on_complete = on_complete

    def in_flight(self) -> List[str]:
        return list(self.requests)

    def finish(self) -> None:
        """Simulate the last in-flight request completing."""
        self.requests.clear()
        self.on_complete()


class FakeTimer:
    """threading.Timer stand-in that only fires when told to."""

    created: List["FakeTimer"] = []

    def __init__(self, interval: float, function: Callable[[], None]):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.function()


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def recording_exit() -> RecordingExit:
    return RecordingExit()


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_timers() -> Generator[List[FakeTimer], None, None]:
    FakeTimer.created = []
    yield FakeTimer.created
    FakeTimer.created = []


@pytest.fixture
def coordinator(fake_server, recording_exit, fake_clock, fake_timers) -> LifecycleCoordinator:
    """Coordinator over a FakeServer with a 30s grace period and fake timers."""
    return LifecycleCoordinator(
        fake_server,
        grace_period=30.0,
        exit_func=recording_exit,
        clock=fake_clock,
        timer_factory=FakeTimer,
    )


# =============================================================================
# REAL SERVER
# =============================================================================

class RunningServer:
    """Runs HTTPServer.run() in a background thread against a real socket."""

    def __init__(self, server: HTTPServer, port: int):
        self.server = server
        self.port = port
        self.result: Optional[int] = None
        self.error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

        # Set by the running_server fixture for its /slow route
        self.entered = threading.Event()
        self.release = threading.Event()

    def _run(self):
        try:
            self.result = self.server.run()
        except BaseException as e:
            self.error = e

    def start(self):
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline:
            if self.server.coordinator.report_readiness():
                return
            if self.error is not None:
                raise self.error
            time.sleep(0.02)

        raise RuntimeError("Server failed to start")

    def request(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 5.0,
    ) -> Tuple[int, Dict[str, str], bytes]:
        """One request on a fresh connection; returns (status, headers, body)."""
        conn = http.client.HTTPConnection("127.0.0.1", self.port, timeout=timeout)
        try:
            conn.request(method, path, body=body, headers=headers or {})
            response = conn.getresponse()
            return response.status, dict(response.getheaders()), response.read()
        finally:
            conn.close()

    def get_json(self, path: str) -> Tuple[int, Dict[str, str], dict]:
        status, headers, body = self.request("GET", path)
        return status, headers, json.loads(body)

    def terminate(self, signal_name: str = "SIGTERM") -> bool:
        return self.server.coordinator.on_termination_signal(signal_name)

    def join(self, timeout: float = 10.0) -> Optional[int]:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.result

    def stop(self):
        if self._thread is not None and self._thread.is_alive():
            self.terminate()
            self.join()


@pytest.fixture
def test_config(free_port: int) -> ServerConfig:
    return ServerConfig(
        host="127.0.0.1",
        port=free_port,
        min_workers=2,
        max_workers=8,
        timeout=5.0,
        keep_alive_timeout=1.0,
        grace_period=5.0,
        retry_after=7,
        log_level="WARNING",
    )


@pytest.fixture
def running_server(test_config: ServerConfig, recording_exit: RecordingExit) -> Generator[RunningServer, None, None]:
    """create_app() with a controllable /slow route, served on a free port."""
    server = create_app(test_config, exit_func=recording_exit)
    running = RunningServer(server, test_config.port)

    @server.get("/slow")
    def slow(request):
        running.entered.set()
        running.release.wait(10.0)
        return ok({"done": True})

    @server.get("/boom")
    def boom(request):
        raise RuntimeError("kaboom")

    running.start()

    yield running

    running.release.set()
    running.stop()
