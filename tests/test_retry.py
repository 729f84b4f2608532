"""Unit tests for the caller-side retry policy."""

import pytest

from sheetsauth.exceptions import (
    AuthFailedError,
    CredentialMalformedError,
    ReauthRequiredError,
)
from sheetsauth.models import AuthMode
from sheetsauth.retry import get_auth_headers_with_retry, is_transient

BEARER = {"Authorization": "Bearer tok123"}


class ScriptedBroker:
    """Broker stand-in that raises the queued errors, then succeeds."""

    def __init__(self, *errors: Exception) -> None:
        self.errors = list(errors)
        self.calls = 0
        self.timeouts: list[float | None] = []

    async def get_auth_headers(self, timeout: float | None = None) -> dict[str, str]:
        self.calls += 1
        self.timeouts.append(timeout)
        if self.errors:
            raise self.errors.pop(0)
        return BEARER


async def _call(broker: ScriptedBroker, **kwargs: object) -> object:
    return await get_auth_headers_with_retry(
        broker,  # type: ignore[arg-type]
        min_wait=0,
        max_wait=0,
        **kwargs,  # type: ignore[arg-type]
    )


class TestIsTransient:
    def test_retryable_auth_failure(self) -> None:
        assert is_transient(AuthFailedError("timed out", retryable=True)) is True

    def test_rejection(self) -> None:
        assert is_transient(AuthFailedError("invalid_grant", status_code=400)) is False

    def test_other_errors(self) -> None:
        assert is_transient(CredentialMalformedError("bad key")) is False
        assert is_transient(ReauthRequiredError("expired", AuthMode.MANAGED_INTERACTIVE)) is False
        assert is_transient(ValueError("nope")) is False


class TestGetAuthHeadersWithRetry:
    """Tests for retrying header acquisition."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        broker = ScriptedBroker()
        assert await _call(broker) == BEARER
        assert broker.calls == 1

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self) -> None:
        broker = ScriptedBroker(
            AuthFailedError("network error", retryable=True),
            AuthFailedError("503", status_code=503, retryable=True),
        )
        assert await _call(broker) == BEARER
        assert broker.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self) -> None:
        broker = ScriptedBroker(*[AuthFailedError(f"fail {i}", retryable=True) for i in range(5)])
        with pytest.raises(AuthFailedError, match="fail 1"):
            await _call(broker, attempts=2)
        assert broker.calls == 2

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self) -> None:
        broker = ScriptedBroker(AuthFailedError("invalid_grant", status_code=400))
        with pytest.raises(AuthFailedError, match="invalid_grant"):
            await _call(broker)
        assert broker.calls == 1

    @pytest.mark.asyncio
    async def test_reauth_is_not_retried(self) -> None:
        broker = ScriptedBroker(ReauthRequiredError("expired", AuthMode.AUTHORIZATION_CODE))
        with pytest.raises(ReauthRequiredError):
            await _call(broker)
        assert broker.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_is_passed_through(self) -> None:
        broker = ScriptedBroker(AuthFailedError("timed out", retryable=True))
        await _call(broker, timeout=2.5)
        assert broker.timeouts == [2.5, 2.5]
