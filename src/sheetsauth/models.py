"""Data model for Google Sheets authentication state.

Credentials are immutable records supplied by an operator. Tokens derived
from them live only in memory, in CachedToken.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union
from urllib.parse import urlencode

# Seconds subtracted from a token's expiry before it is considered unusable
EARLY_EXPIRY_BUFFER = 60

# Type discriminator carried by Google service account key files
SERVICE_ACCOUNT_TYPE = "service_account"


class AuthMode(str, Enum):
    """Mutually exclusive authentication strategies."""

    API_KEY_ONLY = "api_key_only"
    DELEGATED_IDENTITY = "delegated_identity"
    AUTHORIZATION_CODE = "authorization_code"
    MANAGED_INTERACTIVE = "managed_interactive"


@dataclass(frozen=True)
class DelegatedIdentityCredential:
    """Service account key used to mint tokens without user interaction.

    Field names follow the JSON key file Google issues for a service account,
    so a parsed key file round-trips through to_dict() unchanged.
    """

    client_email: str
    private_key: str
    token_uri: str
    private_key_id: str
    project_id: str
    type: str = SERVICE_ACCOUNT_TYPE

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type,
            "project_id": self.project_id,
            "private_key_id": self.private_key_id,
            "private_key": self.private_key,
            "client_email": self.client_email,
            "token_uri": self.token_uri,
        }

    def __repr__(self) -> str:
        return (
            f"DelegatedIdentityCredential(client_email={self.client_email!r}, "
            f"private_key_id={self.private_key_id!r}, project_id={self.project_id!r})"
        )


@dataclass(frozen=True)
class AuthorizationCodeCredential:
    """OAuth client registered by the operator for the authorization-code flow."""

    client_id: str
    client_secret: str

    def to_dict(self) -> dict[str, str]:
        return {"clientId": self.client_id, "clientSecret": self.client_secret}

    def __repr__(self) -> str:
        return f"AuthorizationCodeCredential(client_id={self.client_id!r})"


Credential = Union[DelegatedIdentityCredential, AuthorizationCodeCredential]


@dataclass(frozen=True)
class CachedToken:
    """A bearer token held in memory.

    Attributes:
        access_token: The bearer token.
        expires_at: Unix timestamp reported by the issuer as the expiry.
        refresh_token: Returned by some exchanges; kept but never used.
    """

    access_token: str
    expires_at: float
    refresh_token: str | None = None

    def is_valid(self, now: float | None = None, buffer_seconds: int = EARLY_EXPIRY_BUFFER) -> bool:
        """Check if token is still usable with a safety buffer."""
        if now is None:
            now = time.time()
        return now < self.expires_at - buffer_seconds

    def expires_in_seconds(self, now: float | None = None) -> int:
        """Return seconds until token expires."""
        if now is None:
            now = time.time()
        return max(0, int(self.expires_at - now))

    def __repr__(self) -> str:
        return f"CachedToken(expires_at={self.expires_at!r})"


@dataclass
class AuthState:
    """Live authentication state for one process.

    Only mode and credentials are ever persisted; tokens are per process.
    """

    mode: AuthMode = AuthMode.API_KEY_ONLY
    delegated_identity: DelegatedIdentityCredential | None = None
    authorization_code: AuthorizationCodeCredential | None = None
    tokens: dict[AuthMode, CachedToken] = field(default_factory=dict)

    def credential_for(self, mode: AuthMode) -> Credential | None:
        if mode is AuthMode.DELEGATED_IDENTITY:
            return self.delegated_identity
        if mode is AuthMode.AUTHORIZATION_CODE:
            return self.authorization_code
        return None


@dataclass(frozen=True)
class UseUrlKey:
    """Sentinel meaning "no header needed, send the API key in the URL"."""

    param: str = "key"

    def apply(self, url: str, api_key: str) -> str:
        """Append the API key to a request URL as a query parameter."""
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{urlencode({self.param: api_key})}"


USE_URL_KEY = UseUrlKey()


@dataclass(frozen=True)
class TokenGrant:
    """Result of exchanging an assertion or authorization code for a token."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None


@dataclass(frozen=True)
class StatusSummary:
    """Read-only view of the broker state for display."""

    mode: AuthMode
    mode_name: str
    can_write: bool
    is_configured: bool
    is_token_valid: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "mode_name": self.mode_name,
            "can_write": self.can_write,
            "is_configured": self.is_configured,
            "is_token_valid": self.is_token_valid,
        }
