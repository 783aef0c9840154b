"""
Unit tests for the middleware pipeline, access logging and the drain guard.
"""

import logging
import threading

import pytest

from drainserver.core.inflight import InFlightTracker
from drainserver.http import HTTPRequest, HTTPStatus, ok, not_found
from drainserver.middleware import (
    DrainGuardMiddleware,
    LoggingMiddleware,
    Middleware,
    MiddlewarePipeline,
)


class Recorder(Middleware):
    def __init__(self, label, trail):
        self.label = label
        self.trail = trail

    def __call__(self, request, next):
        self.trail.append(f"{self.label}:before")
        response = next(request)
        self.trail.append(f"{self.label}:after")
        return response


class TestPipeline:
    """Tests for MiddlewarePipeline."""

    def test_order(self):
        """First added is outermost."""
        trail = []

        def handler(request):
            trail.append("handler")
            return ok("done")

        chain = MiddlewarePipeline().use(Recorder("a", trail), Recorder("b", trail)).wrap(handler)
        chain(HTTPRequest(method="GET", path="/"))

        assert trail == ["a:before", "b:before", "handler", "b:after", "a:after"]

    def test_empty_pipeline(self):
        """No middleware: the handler itself is returned."""
        handler = lambda request: ok("x")
        assert MiddlewarePipeline().wrap(handler) is handler

    def test_len(self):
        """len() counts middleware."""
        pipeline = MiddlewarePipeline().add(Recorder("a", []))
        assert len(pipeline) == 1


class TestDrainGuard:
    """Tests for DrainGuardMiddleware."""

    def test_tracks_while_running(self):
        """The request is counted while its handler runs."""
        tracker = InFlightTracker()
        guard = DrainGuardMiddleware(tracker)
        seen = []

        def handler(request):
            seen.append(tracker.snapshot())
            return ok("fine")

        response = guard(HTTPRequest(method="GET", path="/work"), handler)

        assert response.status == HTTPStatus.OK
        assert len(seen[0]) == 1
        assert seen[0][0].startswith("GET /work")
        assert tracker.count == 0

    def test_released_when_handler_raises(self):
        """The token is released even if the handler raises."""
        tracker = InFlightTracker()
        guard = DrainGuardMiddleware(tracker)

        def handler(request):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            guard(HTTPRequest(method="GET", path="/work"), handler)

        assert tracker.count == 0

    def test_refuses_when_draining(self):
        """After close(), requests get 503 with Retry-After and Connection: close."""
        tracker = InFlightTracker()
        tracker.close()
        guard = DrainGuardMiddleware(tracker, retry_after=120)

        called = []
        response = guard(HTTPRequest(method="POST", path="/orders"), called.append)

        assert called == []
        assert response.status == HTTPStatus.SERVICE_UNAVAILABLE
        assert response.headers["Retry-After"] == "120"
        assert response.headers["Connection"] == "close"
        assert response.json == {
            "error": "Service Unavailable",
            "message": "Service is shutting down",
        }

    def test_refusal_beats_not_found(self):
        """During drain an unknown path gets 503, not 404."""
        tracker = InFlightTracker()
        tracker.close()
        guard = DrainGuardMiddleware(tracker)

        response = guard(HTTPRequest(method="GET", path="/nope"), lambda r: not_found(r.path))
        assert response.status == HTTPStatus.SERVICE_UNAVAILABLE

    @pytest.mark.parametrize("path", ["/health", "/ready"])
    def test_probes_pass_through(self, path):
        """Probe paths are neither tracked nor refused."""
        tracker = InFlightTracker()
        tracker.close()
        guard = DrainGuardMiddleware(tracker)

        counts = []

        def handler(request):
            counts.append(tracker.count)
            return ok("probe")

        response = guard(HTTPRequest(method="GET", path=path), handler)

        assert response.status == HTTPStatus.OK
        assert counts == [0]

    def test_in_flight_completes_after_close(self):
        """A request admitted before close() finishes normally."""
        tracker = InFlightTracker()
        guard = DrainGuardMiddleware(tracker)
        entered = threading.Event()
        release = threading.Event()
        results = []

        def slow(request):
            entered.set()
            release.wait(5.0)
            return ok("finished")

        worker = threading.Thread(
            target=lambda: results.append(guard(HTTPRequest(method="GET", path="/slow"), slow))
        )
        worker.start()
        assert entered.wait(5.0)

        tracker.close()
        late = guard(HTTPRequest(method="GET", path="/late"), slow)
        assert late.status == HTTPStatus.SERVICE_UNAVAILABLE

        release.set()
        worker.join(5.0)

        assert results[0].status == HTTPStatus.OK
        assert tracker.wait_idle(timeout=1.0) is True


class TestLoggingMiddleware:
    """Tests for LoggingMiddleware."""

    def test_logs_with_fields(self, caplog):
        """One access record carrying the structured fields."""
        mw = LoggingMiddleware()
        request = HTTPRequest(
            method="GET",
            path="/api/info",
            headers={"user-agent": "pytest"},
            query_params={"verbose": ["1"]},
            client_address=("10.0.0.5", 5555),
        )

        with caplog.at_level(logging.INFO, logger="drainserver.access"):
            response = mw(request, lambda r: ok({"ok": True}))

        record = next(r for r in caplog.records if r.name == "drainserver.access")
        assert record.method == "GET"
        assert record.path == "/api/info"
        assert record.status_code == 200
        assert record.client_ip == "10.0.0.5"
        assert record.query == "verbose=1"
        assert record.request_id == response.headers["X-Request-ID"]
        assert "GET /api/info" in record.getMessage()

    def test_reuses_incoming_request_id(self):
        """An X-Request-ID sent by the client is echoed back."""
        mw = LoggingMiddleware()
        request = HTTPRequest(method="GET", path="/", headers={"x-request-id": "abc123"})

        response = mw(request, lambda r: ok("x"))
        assert response.headers["X-Request-ID"] == "abc123"

    def test_skips_probe_paths(self, caplog):
        """Probe paths are not access-logged by default."""
        mw = LoggingMiddleware()

        with caplog.at_level(logging.INFO, logger="drainserver.access"):
            mw(HTTPRequest(method="GET", path="/health"), lambda r: ok("x"))

        assert not [r for r in caplog.records if r.name == "drainserver.access"]

    def test_logs_and_reraises_failures(self, caplog):
        """A handler exception is logged at ERROR and propagates."""
        mw = LoggingMiddleware()

        def handler(request):
            raise ValueError("bad")

        with caplog.at_level(logging.INFO, logger="drainserver.access"):
            with pytest.raises(ValueError):
                mw(HTTPRequest(method="POST", path="/x"), handler)

        assert any(r.levelno == logging.ERROR for r in caplog.records)
