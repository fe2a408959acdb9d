"""Error taxonomy for the PSP console.

Verification and storage failures are independent classes: a store outage
is never reported to a webhook producer as a signature failure, and a bad
signature never touches the store.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Error classification used in logs and HTTP error bodies."""
    AUTH_FAILURE = "auth_failure"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    UPSTREAM_FETCH_FAILURE = "upstream_fetch_failure"
    MALFORMED_UPSTREAM_PAYLOAD = "malformed_upstream_payload"


class PspConsoleError(Exception):
    """Base exception for all console errors."""

    def __init__(self, message: str, kind: ErrorKind) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind


class AuthFailure(PspConsoleError):
    """Missing or invalid ``psp-signature`` header. Always a 401, never retried."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason, ErrorKind.AUTH_FAILURE)
        self.reason = reason


class StorageUnavailable(PspConsoleError):
    """The durable inbox backend failed at runtime."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.STORAGE_UNAVAILABLE)


class UpstreamFetchFailure(PspConsoleError):
    """The PSP core could not be reached or answered with an error."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UPSTREAM_FETCH_FAILURE,
    ) -> None:
        super().__init__(message, kind)


class PspApiError(UpstreamFetchFailure):
    """Non-2xx, non-JSON or transport-level failure talking to the PSP core."""

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        url: str = "",
        body_text: str = "",
    ) -> None:
        super().__init__(message)
        self.status = status
        self.url = url
        self.body_text = body_text


class MalformedUpstreamPayload(UpstreamFetchFailure):
    """Invoice JSON is missing its required shape (object with a string id)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.MALFORMED_UPSTREAM_PAYLOAD)
