"""
=============================================================================
URL ROUTING
=============================================================================

Maps (method, path) to a handler function.

    GET  /            → InfoHandler.index
    GET  /health      → HealthHandler.liveness
    GET  /ready       → HealthHandler.readiness
    GET  /api/info    → InfoHandler.info

Path patterns:

    /jobs/:id          one segment        {"id": "42"}
    /files/*path       the remainder      {"path": "a/b.txt"}

Routes are tried in registration order. When none matches, the router
answers itself:

    path known, method not     → 405 + Allow header
    path unknown               → 404 {"error": "Not Found", "path": ...}

The drain guard runs before the router, so during shutdown an unknown path
is answered 503 and never reaches the 404 branch.

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .request import HTTPRequest
from .response import HTTPResponse, method_not_allowed, not_found


Handler = Callable[[HTTPRequest], HTTPResponse]

ANY_METHOD_ALLOW = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")


def compile_path(path: str) -> re.Pattern:
    """
    Anchored regex for a path pattern.

        "/jobs/:id/logs/*rest"  →  ^/jobs/(?P<id>[^/]+)/logs/(?P<rest>.*)$
    """
    parts = []
    for segment in filter(None, path.split("/")):
        if segment[0] == ":":
            parts.append(f"/(?P<{segment[1:]}>[^/]+)")
        elif segment[0] == "*":
            parts.append(f"/(?P<{segment[1:] or 'wildcard'}>.*)")
            break
        else:
            parts.append("/" + re.escape(segment))

    return re.compile("^" + ("".join(parts) or "/") + "$")


def normalize_path(path: str) -> str:
    """Drop trailing slashes; the root stays "/"."""
    return "/" + path.strip("/")


@dataclass
class Route:
    """A path pattern and optional method bound to a handler."""

    path: str
    method: Optional[str]            # None = any method
    handler: Handler
    name: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    pattern: re.Pattern = field(init=False, repr=False)

    def __post_init__(self):
        if self.method:
            self.method = self.method.upper()
        self.pattern = compile_path(self.path)

    def match_path(self, path: str) -> Optional[Dict[str, str]]:
        """Path params if ``path`` fits the pattern, else None."""
        found = self.pattern.match(path)
        return found.groupdict() if found else None

    def accepts(self, method: str) -> bool:
        return self.method is None or self.method == method.upper()


@dataclass
class RouteMatch:
    route: Route
    params: Dict[str, str]


class Router:
    """
    Request router.

        router = Router()

        @router.get("/jobs/:id")
        def get_job(request):
            return ok({"id": request.path_params["id"]})

    Args:
        prefix: Prepended to every registered path.
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix.rstrip("/")
        self._routes: List[Route] = []

    def add_route(
        self,
        path: str,
        handler: Handler,
        method: Optional[str] = None,
        name: Optional[str] = None,
        **meta: Any
    ) -> Route:
        """Register ``handler`` for ``method`` (any, if None) on ``path``."""
        route = Route(self.prefix + path, method, handler, name=name, meta=meta)
        self._routes.append(route)
        return route

    def routes(self) -> List[Route]:
        return list(self._routes)

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """First route accepting both method and path, or None."""
        path = normalize_path(path)
        for route in self._routes:
            if not route.accepts(method):
                continue
            params = route.match_path(path)
            if params is not None:
                return RouteMatch(route, params)
        return None

    def allowed_methods(self, path: str) -> List[str]:
        """Methods registered on ``path``, sorted; the 405 Allow header."""
        path = normalize_path(path)
        methods = set()
        for route in self._routes:
            if route.match_path(path) is None:
                continue
            if route.method is None:
                return list(ANY_METHOD_ALLOW)
            methods.add(route.method)
        return sorted(methods)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Matched handler, else 405, else 404."""
        found = self.match(request.method, request.path)
        if found is not None:
            request.path_params = found.params
            return found.route.handler(request)

        allowed = self.allowed_methods(request.path)
        if allowed:
            return method_not_allowed(allowed)
        return not_found(request.path)

    # Decorator registration

    def route(
        self,
        path: str,
        method: Optional[str] = None,
        name: Optional[str] = None,
        **meta: Any
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method, name, **meta)
            return handler
        return decorator

    def get(self, path: str, name: Optional[str] = None, **meta: Any):
        return self.route(path, "GET", name, **meta)

    def post(self, path: str, name: Optional[str] = None, **meta: Any):
        return self.route(path, "POST", name, **meta)

    def put(self, path: str, name: Optional[str] = None, **meta: Any):
        return self.route(path, "PUT", name, **meta)

    def delete(self, path: str, name: Optional[str] = None, **meta: Any):
        return self.route(path, "DELETE", name, **meta)
