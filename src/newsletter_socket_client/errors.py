from __future__ import annotations

from typing import Any


class NewsletterError(Exception):
    """Base exception for the newsletter-socket-client package."""


class NewsletterTransportError(NewsletterError):
    """Raised when the underlying transport fails or disconnects unexpectedly."""


class NewsletterTimeoutError(NewsletterTransportError):
    """Raised when a transport reply does not arrive within its timeout."""


class NewsletterServerError(NewsletterError):
    """Raised when a query result lists one or more server-side errors."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 400,
        data: Any = None,
    ) -> None:
        """Create a server error.

        Args:
            message: Joined server error messages.
            status_code: Status code reported by the first error, or 400.
            data: The first error object as decoded from the response.
        """
        super().__init__(message)
        self.status_code = status_code
        self.data = data


class NewsletterUnexpectedResponseError(NewsletterError):
    """Raised when a response reports no error but lacks the expected data."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 400,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.data = data


class NewsletterDecodeError(NewsletterError, ValueError):
    """Raised when a `result` payload is not valid JSON."""

    def __init__(self, message: str, *, content: bytes = b"") -> None:
        super().__init__(message)
        self.content = content


class NewsletterUnknownActionError(NewsletterError, ValueError):
    """Raised when an action name does not map to a known query id."""

    def __init__(self, action: str) -> None:
        super().__init__(f"unknown newsletter action: {action!r}")
        self.action = action
