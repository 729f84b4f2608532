"""Unit tests for TokenExchanger against a mocked token endpoint."""

from __future__ import annotations

from collections.abc import Callable
from urllib.parse import parse_qs

import httpx
import pytest

from sheetsauth.exceptions import AuthFailedError
from sheetsauth.exchanger import JWT_BEARER_GRANT, TokenExchanger

TOKEN_URI = "https://oauth2.googleapis.com/token"

Handler = Callable[[httpx.Request], httpx.Response]


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, response: httpx.Response | Exception) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _exchanger(handler: Handler, token_endpoint: str = TOKEN_URI) -> TokenExchanger:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TokenExchanger(token_endpoint=token_endpoint, client=client)


class TestExchangeAssertion:
    """Tests for the jwt-bearer grant."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        recorder = Recorder(
            httpx.Response(200, json={"access_token": "tok123", "expires_in": 3600})
        )
        exchanger = _exchanger(recorder)

        grant = await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")

        assert grant.access_token == "tok123"
        assert grant.expires_in == 3600
        assert grant.refresh_token is None

        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == TOKEN_URI
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert _form(request) == {"grant_type": JWT_BEARER_GRANT, "assertion": "a.b.c"}

    @pytest.mark.asyncio
    async def test_rejection_carries_remote_description(self) -> None:
        recorder = Recorder(
            httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Invalid JWT Signature."},
            )
        )
        exchanger = _exchanger(recorder)

        with pytest.raises(AuthFailedError) as exc_info:
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")

        error = exc_info.value
        assert "Invalid JWT Signature." in str(error)
        assert error.description == "Invalid JWT Signature."
        assert error.status_code == 400
        assert error.retryable is False
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_rejection_without_description_uses_error_code(self) -> None:
        exchanger = _exchanger(Recorder(httpx.Response(401, json={"error": "unauthorized_client"})))
        with pytest.raises(AuthFailedError, match="unauthorized_client"):
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")

    @pytest.mark.asyncio
    async def test_rejection_with_plain_text_body(self) -> None:
        exchanger = _exchanger(Recorder(httpx.Response(502, text="Bad Gateway from proxy")))
        with pytest.raises(AuthFailedError, match="Bad Gateway from proxy") as exc_info:
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self) -> None:
        exchanger = _exchanger(Recorder(httpx.Response(503, json={"error": "backend_error"})))
        with pytest.raises(AuthFailedError) as exc_info:
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")
        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        request = httpx.Request("POST", TOKEN_URI)
        exchanger = _exchanger(Recorder(httpx.ReadTimeout("timed out", request=request)))
        with pytest.raises(AuthFailedError, match="timed out") as exc_info:
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")
        assert exc_info.value.retryable is True
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        request = httpx.Request("POST", TOKEN_URI)
        exchanger = _exchanger(Recorder(httpx.ConnectError("refused", request=request)))
        with pytest.raises(AuthFailedError, match="network error") as exc_info:
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_malformed_endpoint_url(self) -> None:
        recorder = Recorder(httpx.Response(200, json={"access_token": "t"}))
        exchanger = _exchanger(recorder)
        with pytest.raises(AuthFailedError, match="invalid token endpoint") as exc_info:
            await exchanger.exchange_assertion("http://exa\x00mple.com/token", "a.b.c")
        assert exc_info.value.retryable is False
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_unsupported_scheme(self) -> None:
        request = httpx.Request("POST", TOKEN_URI)
        error = httpx.UnsupportedProtocol("unsupported protocol", request=request)
        exchanger = _exchanger(Recorder(error))
        with pytest.raises(AuthFailedError, match="invalid token endpoint") as exc_info:
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_success_without_access_token(self) -> None:
        exchanger = _exchanger(Recorder(httpx.Response(200, json={"expires_in": 3600})))
        with pytest.raises(AuthFailedError, match="access token"):
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")

    @pytest.mark.asyncio
    async def test_invalid_expires_in(self) -> None:
        exchanger = _exchanger(
            Recorder(httpx.Response(200, json={"access_token": "t", "expires_in": "soon"}))
        )
        with pytest.raises(AuthFailedError, match="expires_in"):
            await exchanger.exchange_assertion(TOKEN_URI, "a.b.c")


class TestExchangeAuthorizationCode:
    """Tests for the authorization_code grant."""

    @pytest.mark.asyncio
    async def test_success_with_refresh_token(self) -> None:
        recorder = Recorder(
            httpx.Response(
                200,
                json={"access_token": "user-tok", "expires_in": 3599, "refresh_token": "r-tok"},
            )
        )
        exchanger = _exchanger(recorder, token_endpoint="https://auth.example.com/token")

        grant = await exchanger.exchange_authorization_code(
            "cid", "shh", "code-1", "http://localhost:8080/oauth-callback"
        )

        assert grant.access_token == "user-tok"
        assert grant.expires_in == 3599
        assert grant.refresh_token == "r-tok"

        request = recorder.requests[0]
        assert str(request.url) == "https://auth.example.com/token"
        assert _form(request) == {
            "client_id": "cid",
            "client_secret": "shh",
            "code": "code-1",
            "redirect_uri": "http://localhost:8080/oauth-callback",
            "grant_type": "authorization_code",
        }

    @pytest.mark.asyncio
    async def test_rejection(self) -> None:
        exchanger = _exchanger(
            Recorder(
                httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "Bad Request"},
                )
            )
        )
        with pytest.raises(AuthFailedError, match="OAuth authentication failed: Bad Request"):
            await exchanger.exchange_authorization_code("cid", "shh", "used-code", "http://x")


class TestClose:
    @pytest.mark.asyncio
    async def test_injected_client_is_left_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(Recorder(httpx.Response(200))))
        exchanger = TokenExchanger(client=client)
        await exchanger.close()
        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_close_without_requests(self) -> None:
        await TokenExchanger().close()
