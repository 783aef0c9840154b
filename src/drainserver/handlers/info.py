"""Service information endpoints: GET /api/info and the GET / index."""

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ok, iso_timestamp


class InfoHandler:
    def __init__(self, name: str, version: str, environment: str):
        self.name = name
        self.version = version
        self.environment = environment

    def info(self, request: HTTPRequest) -> HTTPResponse:
        return ok({
            "name": self.name,
            "version": self.version,
            "environment": self.environment,
            "timestamp": iso_timestamp(),
        })

    def index(self, request: HTTPRequest) -> HTTPResponse:
        return ok({
            "message": f"{self.name} is running",
            "documentation": {
                "health": "/health",
                "ready": "/ready",
                "info": "/api/info",
            },
        })
