"""
Upstream Error Types

Structured errors raised by the Toast client layer. They carry enough
context (status, body snippet, headers, request id) to diagnose a failure
from a log line or a 502 payload without re-running the request.
"""

from typing import Any, Optional

BODY_SNIPPET_LIMIT = 512

REQUEST_ID_HEADERS = ("toast-request-id", "x-toast-request-id", "x-request-id", "cf-ray")


def extract_request_id(headers: Optional[dict[str, str]]) -> Optional[str]:
    """Pick the upstream request id from response headers, if any."""
    if not headers:
        return None
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in REQUEST_ID_HEADERS:
        value = lowered.get(name)
        if value:
            return value
    return None


class UpstreamError(Exception):
    """
    Failure talking to the upstream POS API.

    Attributes:
        status: HTTP status, or None for transport failures
        body_snippet: First 512 characters of the response body
        response_headers: Response headers (lowercased keys)
        request_id: Upstream request id when the response carried one
        route: Upstream route that failed
        attempts: Number of attempts made before giving up
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body_snippet: str = "",
        response_headers: Optional[dict[str, str]] = None,
        request_id: Optional[str] = None,
        route: Optional[str] = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body_snippet = (body_snippet or "")[:BODY_SNIPPET_LIMIT]
        self.response_headers = response_headers or {}
        self.request_id = request_id or extract_request_id(self.response_headers)
        self.route = route
        self.attempts = attempts

    @property
    def code(self) -> str:
        """Machine-readable error code for API responses."""
        if self.status == 429:
            return "UPSTREAM_RATE_LIMITED"
        if self.status is not None and 400 <= self.status < 500:
            return "UPSTREAM_CLIENT_ERROR"
        return "UPSTREAM_UNAVAILABLE"

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "message": self.message,
            "code": self.code,
            "status": self.status,
            "bodySnippet": self.body_snippet,
            "requestId": self.request_id,
            "route": self.route,
            "attempts": self.attempts,
        }


class AuthError(UpstreamError):
    """Token endpoint failure. Never retried by the token manager."""

    @property
    def code(self) -> str:
        return "UPSTREAM_AUTH_FAILED"

    @property
    def retryable(self) -> bool:
        return False
