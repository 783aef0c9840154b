"""
Unit tests for HTTP response building.
"""

import json
from datetime import datetime, timezone

import pytest

from drainserver.http.response import (
    HTTPResponse,
    ResponseBuilder,
    format_http_date,
    internal_error,
    iso_timestamp,
    method_not_allowed,
    not_found,
    ok,
    service_unavailable,
)
from drainserver.http.status_codes import HTTPStatus


class TestHTTPResponse:
    """Tests for HTTPResponse."""

    def test_status_line(self):
        """Status line carries code and phrase."""
        assert HTTPResponse(status=HTTPStatus.OK).status_line == "HTTP/1.1 200 OK"
        assert (
            HTTPResponse(status=HTTPStatus.SERVICE_UNAVAILABLE).status_line
            == "HTTP/1.1 503 Service Unavailable"
        )

    def test_to_bytes(self):
        """Serialized form has headers, Content-Length, Server and body."""
        response = HTTPResponse(headers={"X-Custom": "value"}, body=b"test")
        result = response.to_bytes("drainserver/test")

        assert result.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"X-Custom: value\r\n" in result
        assert b"Content-Length: 4\r\n" in result
        assert b"Server: drainserver/test\r\n" in result
        assert b"Date: " in result
        assert result.endswith(b"\r\n\r\ntest")

    def test_set_header_chaining(self):
        """set_header returns the response."""
        response = HTTPResponse().set_header("X-One", "1").set_header("X-Two", "2")
        assert response.headers == {"X-One": "1", "X-Two": "2"}


class TestResponseBuilder:
    """Tests for ResponseBuilder."""

    def test_json_body(self):
        """JSON body with matching Content-Type."""
        response = ResponseBuilder().json({"phase": "ready"}).build()

        assert response.headers["Content-Type"] == "application/json; charset=utf-8"
        assert json.loads(response.body) == {"phase": "ready"}

    def test_json_default_str(self):
        """Non-JSON values are stringified."""
        moment = datetime(2026, 1, 1, tzinfo=timezone.utc)
        response = ResponseBuilder().json({"at": moment}).build()
        assert response.json["at"].startswith("2026-01-01")

    def test_text_body(self):
        """Plain text body."""
        response = ResponseBuilder().text("Hello").build()

        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
        assert response.body == b"Hello"

    def test_no_cache(self):
        """no_cache forbids storing the response."""
        response = ResponseBuilder().no_cache().build()
        assert "no-store" in response.headers["Cache-Control"]

    def test_retry_after_and_close(self):
        """Retry-After is an integer number of seconds."""
        response = ResponseBuilder().retry_after(120).close_connection().build()

        assert response.headers["Retry-After"] == "120"
        assert response.headers["Connection"] == "close"


class TestHelpers:
    """Tests for the response helper functions."""

    def test_ok_dict(self):
        """ok() with a dict is JSON."""
        response = ok({"ready": True})
        assert response.status == HTTPStatus.OK
        assert response.json == {"ready": True}

    def test_not_found_echoes_path(self):
        """404 body names the path."""
        response = not_found("/missing")
        assert response.status == HTTPStatus.NOT_FOUND
        assert response.json == {"error": "Not Found", "path": "/missing"}

    def test_method_not_allowed(self):
        """405 lists the allowed methods in Allow."""
        response = method_not_allowed(["GET", "HEAD"])
        assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET, HEAD"

    def test_internal_error_default_message(self):
        """500 hides details unless given a message."""
        response = internal_error()
        assert response.json == {"error": "Internal Server Error", "message": "An error occurred"}

    @pytest.mark.parametrize("retry_after, expected", [(None, None), (30, "30")])
    def test_service_unavailable(self, retry_after, expected):
        """503 body, with Retry-After only when given."""
        response = service_unavailable(retry_after=retry_after)

        assert response.status == HTTPStatus.SERVICE_UNAVAILABLE
        assert response.json["message"] == "Service is shutting down"
        assert response.headers.get("Retry-After") == expected

    def test_format_http_date(self):
        """RFC 7231 date format."""
        moment = datetime(2026, 1, 7, 9, 5, 3, tzinfo=timezone.utc)
        assert format_http_date(moment) == "Wed, 07 Jan 2026 09:05:03 GMT"

    def test_iso_timestamp(self):
        """UTC ISO 8601 ending in Z."""
        stamp = iso_timestamp()
        assert stamp.endswith("Z")
        assert "+00:00" not in stamp


class TestHTTPStatus:
    """Tests for the status enum."""

    def test_categories(self):
        """Success / client / server error helpers."""
        assert HTTPStatus.OK.is_success
        assert HTTPStatus.NOT_FOUND.is_client_error
        assert HTTPStatus.SERVICE_UNAVAILABLE.is_server_error
        assert HTTPStatus(413) is HTTPStatus.PAYLOAD_TOO_LARGE
