"""URL builders for the two modes that work through the URL."""

from __future__ import annotations

from urllib.parse import urlencode

from sheetsauth.config import SPREADSHEETS_SCOPE
from sheetsauth.models import USE_URL_KEY

GOOGLE_AUTHORIZE_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"


def build_api_key_url(base_url: str, api_key: str) -> str:
    """Append the read-only API key to a Sheets API URL."""
    return USE_URL_KEY.apply(base_url, api_key)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    *,
    scope: str = SPREADSHEETS_SCOPE,
    endpoint: str = GOOGLE_AUTHORIZE_ENDPOINT,
    state: str | None = None,
) -> str:
    """Build the Google consent URL for the authorization-code flow.

    Requests offline access and forces the consent screen so that Google
    returns a refresh token on every sign-in.
    """
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scope,
        "access_type": "offline",
        "prompt": "consent",
    }
    if state:
        params["state"] = state
    return f"{endpoint}?{urlencode(params)}"
