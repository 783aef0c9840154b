"""
HTTP/1.1 message handling.

    request.py        raw bytes → HTTPRequest (RequestParser, HTTPParseError)
    response.py       HTTPResponse, ResponseBuilder and response helpers
    router.py         (method, path) → handler, with 404/405 fallbacks
    status_codes.py   HTTPStatus enum with reason phrases
"""

from .request import HTTPRequest, RequestParser, HTTPParseError
from .response import (
    HTTPResponse,
    ResponseBuilder,
    ok,
    error_response,
    not_found,
    method_not_allowed,
    internal_error,
    service_unavailable,
    iso_timestamp,
)
from .router import Router, Route, RouteMatch, Handler
from .status_codes import HTTPStatus

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "HTTPResponse",
    "ResponseBuilder",
    "ok",
    "error_response",
    "not_found",
    "method_not_allowed",
    "internal_error",
    "service_unavailable",
    "iso_timestamp",
    "Router",
    "Route",
    "RouteMatch",
    "Handler",
    "HTTPStatus",
]
