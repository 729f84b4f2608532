"""Network exchanges that turn an assertion or auth code into a bearer token.

Each call is one form-encoded POST. There is no retry here; see
sheetsauth.retry for the caller-side policy.
"""

from __future__ import annotations

import ssl
from typing import Any

import certifi
import httpx
from loguru import logger

from sheetsauth.exceptions import AuthFailedError
from sheetsauth.models import TokenGrant
from sheetsauth.signer import SignedAssertion

GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_TIMEOUT = 30.0


class TokenExchanger:
    """Performs token exchanges against an OAuth 2.0 token endpoint.

    Args:
        token_endpoint: Endpoint used for authorization-code exchanges.
        timeout: Request timeout in seconds.
        client: Optional pre-built httpx client (injectable for testing).
            A client passed in is not closed by close().
    """

    def __init__(
        self,
        token_endpoint: str = GOOGLE_TOKEN_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token_endpoint = token_endpoint
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client (lazy initialization)."""
        if self._client is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                verify=ssl_context,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def exchange_assertion(
        self, endpoint: str, assertion: SignedAssertion | str
    ) -> TokenGrant:
        """Exchange a signed JWT for an access token (jwt-bearer grant)."""
        data = {"grant_type": JWT_BEARER_GRANT, "assertion": str(assertion)}
        return await self._post(endpoint, data, "Service account authentication failed")

    async def exchange_authorization_code(
        self, client_id: str, client_secret: str, code: str, redirect_uri: str
    ) -> TokenGrant:
        """Exchange an authorization code for an access token.

        The returned grant may carry a refresh token.
        """
        data = {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        return await self._post(self._token_endpoint, data, "OAuth authentication failed")

    async def _post(self, url: str, data: dict[str, str], failure: str) -> TokenGrant:
        try:
            response = await self._get_client().post(url, data=data)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            logger.warning(
                "Token endpoint URL is invalid", extra={"endpoint": url, "error": str(e)}
            )
            raise AuthFailedError(f"{failure}: invalid token endpoint {url!r}: {e}") from e
        except httpx.TimeoutException as e:
            logger.warning("Token exchange timed out", extra={"endpoint": url})
            raise AuthFailedError(f"{failure}: request timed out", retryable=True) from e
        except httpx.RequestError as e:
            logger.warning("Token exchange network error", extra={"endpoint": url, "error": str(e)})
            raise AuthFailedError(f"{failure}: network error: {e}", retryable=True) from e

        payload = _json_or_none(response)

        if not response.is_success:
            description = (
                _error_description(payload) or response.text.strip() or response.reason_phrase
            )
            logger.warning(
                "Token exchange rejected",
                extra={"endpoint": url, "status": response.status_code, "error": description},
            )
            raise AuthFailedError(
                f"{failure}: {description}",
                status_code=response.status_code,
                description=description,
                retryable=response.status_code >= 500,
            )

        if not payload or not payload.get("access_token"):
            raise AuthFailedError(
                f"{failure}: response did not include an access token",
                status_code=response.status_code,
            )

        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError) as e:
            raise AuthFailedError(
                f"{failure}: invalid expires_in {payload.get('expires_in')!r}",
                status_code=response.status_code,
            ) from e

        return TokenGrant(
            access_token=payload["access_token"],
            expires_in=expires_in,
            refresh_token=payload.get("refresh_token"),
        )

    async def close(self) -> None:
        """Close the HTTP client if this exchanger created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def _json_or_none(response: httpx.Response) -> dict[str, Any] | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _error_description(payload: dict[str, Any] | None) -> str | None:
    if not payload:
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        # Google API style: {"error": {"message": ..., "status": ...}}
        return error.get("message") or error.get("status")
    return payload.get("error_description") or error
