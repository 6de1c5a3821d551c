"""
Error taxonomy for the relay endpoints.

Every failure a handler can raise maps to one HTTP status and one
public message. The message is what the caller sees; anything
diagnostic (upstream status, upstream body) stays on the exception for
logging and is never rendered.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class. Subclasses pin the status code and default message."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class Unauthorized(RelayError):
    status_code = 401
    default_message = "Unauthorized"


class RateLimited(RelayError):
    status_code = 429
    default_message = "Too many requests"


class InvalidInput(RelayError):
    status_code = 400
    default_message = "Invalid message"


class UpstreamError(RelayError):
    status_code = 502
    default_message = "AI service error"

    def __init__(
        self,
        message: str | None = None,
        upstream_status: int | None = None,
        upstream_body: str = "",
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class ServerMisconfigured(RelayError):
    status_code = 500
    default_message = "Server configuration error"
