"""Exceptions raised by sheetsauth.

Every message is written to be shown to a user as-is.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sheetsauth.models import AuthMode


class SheetsAuthError(Exception):
    """Base exception for sheetsauth errors."""

    pass


class NotConfiguredError(SheetsAuthError):
    """Raised when the active mode needs a credential that was never set."""

    def __init__(self, message: str, mode: AuthMode | None = None) -> None:
        super().__init__(message)
        self.mode = mode


class CredentialMalformedError(SheetsAuthError):
    """Raised when a credential has the wrong shape or an unreadable key.

    Always raised before any network request is made.
    """

    def __init__(self, message: str, missing_fields: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.missing_fields = missing_fields


class AuthFailedError(SheetsAuthError):
    """Raised when a token exchange is rejected or cannot reach the server.

    Attributes:
        status_code: HTTP status of the rejection, None for network errors.
        description: Error text supplied by the remote server, if any.
        retryable: True for timeouts, connection errors and 5xx responses.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        description: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.description = description
        self.retryable = retryable


class ReauthRequiredError(SheetsAuthError):
    """Raised when a mode without an internal refresh path has no usable token."""

    def __init__(self, message: str, mode: AuthMode) -> None:
        super().__init__(message)
        self.mode = mode
