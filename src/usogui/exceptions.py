"""Error taxonomy for the reader core."""

from __future__ import annotations

from typing import Any


class UsoguiError(Exception):
    """Base exception for the reader core."""


class InvalidRangeError(UsoguiError, ValueError):
    """A chapter value fell outside the accepted range.

    Raised before any persistence attempt, never reaches the network layer.
    """

    def __init__(self, value: int, minimum: int, maximum: int) -> None:
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"Chapter must be between {minimum} and {maximum}, got {value}")


class FetchError(UsoguiError):
    """Network or REST failure talking to the API. Always retryable."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        url: str | None = None,
        method: str = "GET",
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.url = url
        self.method = method
        self.details = details


class MalformedCacheEntry(UsoguiError):
    """A persisted record failed to parse or failed its shape check."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Malformed entry at {key}: {reason}")
