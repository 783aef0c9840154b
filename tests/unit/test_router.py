"""
Unit tests for URL routing.
"""

from drainserver.http.router import Router
from drainserver.http.request import HTTPRequest
from drainserver.http.response import HTTPResponse, ResponseBuilder
from drainserver.http.status_codes import HTTPStatus


def make_request(method: str, path: str) -> HTTPRequest:
    return HTTPRequest(method=method, path=path)


def dummy_handler(request: HTTPRequest) -> HTTPResponse:
    return ResponseBuilder().json({"path": request.path}).build()


class TestMatching:
    """Tests for Router.match."""

    def test_static_paths(self):
        """Exact paths match their own route."""
        router = Router()
        router.add_route("/health", dummy_handler, method="GET")
        router.add_route("/ready", dummy_handler, method="GET")

        assert router.match("GET", "/health").route.path == "/health"
        assert router.match("GET", "/ready").route.path == "/ready"

    def test_root_path(self):
        """The index route matches / and nothing else."""
        router = Router()
        router.add_route("/", dummy_handler, method="GET")
        router.add_route("/api/info", dummy_handler, method="GET")

        assert router.match("GET", "/").route.path == "/"
        assert router.match("GET", "/api/info").route.path == "/api/info"
        assert router.match("GET", "/other") is None

    def test_trailing_slash(self):
        """A trailing slash is ignored."""
        router = Router()
        router.add_route("/api/info", dummy_handler, method="GET")
        assert router.match("GET", "/api/info/") is not None

    def test_dynamic_params(self):
        """:name captures one segment."""
        router = Router()
        router.add_route("/jobs/:job_id/runs/:run_id", dummy_handler, method="GET")

        match = router.match("GET", "/jobs/7/runs/42")
        assert match.params == {"job_id": "7", "run_id": "42"}

    def test_wildcard(self):
        """*name captures the remainder."""
        router = Router()
        router.add_route("/files/*path", dummy_handler, method="GET")

        assert router.match("GET", "/files/a/b/c.txt").params == {"path": "a/b/c.txt"}

    def test_method_mismatch(self):
        """Same path, other method: no match."""
        router = Router()
        router.add_route("/health", dummy_handler, method="GET")
        assert router.match("POST", "/health") is None

    def test_prefix(self):
        """A router prefix is prepended to every route."""
        router = Router(prefix="/api/")
        router.add_route("/info", dummy_handler, method="GET")
        assert router.match("GET", "/api/info") is not None


class TestHandle:
    """Tests for Router.handle."""

    def test_dispatch_sets_path_params(self):
        """The handler sees the captured path params."""
        router = Router()

        @router.get("/jobs/:id")
        def get_job(request):
            return ResponseBuilder().json(request.path_params).build()

        response = router.handle(make_request("GET", "/jobs/9"))
        assert response.json == {"id": "9"}

    def test_not_found(self):
        """Unknown path: 404 with the path in the body."""
        router = Router()
        router.add_route("/health", dummy_handler, method="GET")

        response = router.handle(make_request("GET", "/nope"))

        assert response.status == HTTPStatus.NOT_FOUND
        assert response.json == {"error": "Not Found", "path": "/nope"}

    def test_method_not_allowed(self):
        """Known path, wrong method: 405 with Allow."""
        router = Router()
        router.add_route("/jobs", dummy_handler, method="GET")
        router.add_route("/jobs", dummy_handler, method="POST")

        response = router.handle(make_request("DELETE", "/jobs"))

        assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET, POST"

    def test_any_method_route(self):
        """A route without a method accepts every method."""
        router = Router()
        router.add_route("/echo", dummy_handler)

        assert router.handle(make_request("PATCH", "/echo")).status == HTTPStatus.OK


class TestDecorators:
    """Tests for decorator registration."""

    def test_decorators_register_methods(self):
        """get/post/put/delete register their method and return the handler."""
        router = Router()

        for register, method in (
            (router.get, "GET"),
            (router.post, "POST"),
            (router.put, "PUT"),
            (router.delete, "DELETE"),
        ):
            assert register("/x")(dummy_handler) is dummy_handler

        assert [r.method for r in router.routes()] == ["GET", "POST", "PUT", "DELETE"]

    def test_named_route_meta(self):
        """Names and metadata are kept on the route."""
        router = Router()
        router.get("/health", name="health", probe=True)(dummy_handler)

        route = router.routes()[0]
        assert route.name == "health"
        assert route.meta == {"probe": True}
