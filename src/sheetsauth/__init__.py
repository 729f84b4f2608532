"""sheetsauth - credential and bearer-token lifecycle for the Google Sheets API.

Four mutually exclusive modes are supported:
1. API key - read-only, key appended to the request URL
2. Service account - read-write, tokens minted from a JSON key file
3. Custom OAuth client - read-write, authorization-code sign-in
4. Google sign-in - read-write, token supplied by an external sign-in flow

Example:
    from sheetsauth import USE_URL_KEY, AuthMode, CredentialStore, TokenBroker

    broker = TokenBroker.from_store(CredentialStore())
    broker.set_credentials(AuthMode.DELEGATED_IDENTITY, key_file_dict)
    broker.set_mode(AuthMode.DELEGATED_IDENTITY)

    headers = await broker.get_auth_headers()
    if headers is USE_URL_KEY:
        url = USE_URL_KEY.apply(url, api_key)
"""

from sheetsauth.broker import AuthHeaders, TokenBroker
from sheetsauth.exceptions import (
    AuthFailedError,
    CredentialMalformedError,
    NotConfiguredError,
    ReauthRequiredError,
    SheetsAuthError,
)
from sheetsauth.exchanger import TokenExchanger
from sheetsauth.models import (
    USE_URL_KEY,
    AuthMode,
    AuthorizationCodeCredential,
    AuthState,
    CachedToken,
    DelegatedIdentityCredential,
    StatusSummary,
    TokenGrant,
    UseUrlKey,
)
from sheetsauth.registry import REGISTRY, AuthModeRegistry, IdentityAllowlist
from sheetsauth.retry import get_auth_headers_with_retry
from sheetsauth.signer import JWTSigner, SignedAssertion
from sheetsauth.store import CredentialStore

__version__ = "0.1.0"
__all__ = [
    "REGISTRY",
    "USE_URL_KEY",
    "AuthFailedError",
    "AuthHeaders",
    "AuthMode",
    "AuthModeRegistry",
    "AuthState",
    "AuthorizationCodeCredential",
    "CachedToken",
    "CredentialMalformedError",
    "CredentialStore",
    "DelegatedIdentityCredential",
    "IdentityAllowlist",
    "JWTSigner",
    "NotConfiguredError",
    "ReauthRequiredError",
    "SheetsAuthError",
    "SignedAssertion",
    "StatusSummary",
    "TokenBroker",
    "TokenExchanger",
    "TokenGrant",
    "UseUrlKey",
    "get_auth_headers_with_retry",
]
