"""Errors raised by the upstream watchlist and Letterboxd clients."""

from __future__ import annotations


class UpstreamError(Exception):
    """An upstream request failed in a way callers may report to users."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        suggestion: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.message}
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload


class NotFoundError(UpstreamError):
    status_code = 404


class ForbiddenError(UpstreamError):
    status_code = 403


class RateLimitedError(UpstreamError):
    status_code = 429


class ServiceUnavailableError(UpstreamError):
    status_code = 503
