"""
Error taxonomy shared by services and routers.

Every failure a route can produce is a ConsoleError subclass. The handler
registered in main.py renders them as JSON:

  • {"error": ..., "details": ...}  — upstream rejections, bad input
  • {"error": ..., "message": ...}  — transport failures

so no exception ever escapes a route unhandled.
"""

from __future__ import annotations

from fastapi import status


class ConsoleError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        error: str,
        *,
        details: str | None = None,
        message: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(error)
        self.error = error
        self.details = details
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        if self.message is not None:
            body["message"] = self.message
        return body


class ConfigurationError(ConsoleError):
    """A required credential is missing. Raised before any network call."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class MissingParameterError(ConsoleError):
    """A required query parameter was not supplied."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidLimitError(ConsoleError):
    """A limit field could not be coerced into a finite number."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT


class UpstreamError(ConsoleError):
    """
    Non-2xx response from the gateway or metering API.

    The upstream status code is mirrored and the raw response text is
    relayed verbatim in `details`.
    """

    def __init__(self, error: str, *, upstream_status: int, body: str) -> None:
        super().__init__(error, details=body, status_code=upstream_status)
        self.upstream_status = upstream_status
        self.body = body


class UpstreamUnavailableError(ConsoleError):
    """The upstream could not be reached (DNS, connect, timeout, …)."""

    status_code = status.HTTP_502_BAD_GATEWAY
