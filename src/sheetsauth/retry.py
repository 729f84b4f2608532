"""Caller-side retry policy for header acquisition.

The broker and exchanger make exactly one attempt per call. Callers that
want to ride out transient failures (timeouts, connection errors, 5xx from
the token endpoint) wrap the call with get_auth_headers_with_retry().
Rejections such as invalid_grant are never retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from sheetsauth.exceptions import AuthFailedError

if TYPE_CHECKING:
    from sheetsauth.broker import AuthHeaders, TokenBroker
    from sheetsauth.models import UseUrlKey

DEFAULT_ATTEMPTS = 3


def is_transient(exc: BaseException) -> bool:
    """True for failures worth another attempt."""
    return isinstance(exc, AuthFailedError) and exc.retryable


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    logger.warning(
        "Retrying token request",
        extra={"attempt": retry_state.attempt_number, "error": str(error)},
    )


async def get_auth_headers_with_retry(
    broker: TokenBroker,
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    timeout: float | None = None,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
) -> AuthHeaders | UseUrlKey:
    """Call broker.get_auth_headers(), retrying transient failures.

    Args:
        broker: The process's token broker.
        attempts: Total attempts including the first.
        timeout: Per-attempt timeout passed to the broker.
        min_wait: Lower bound in seconds on the backoff between attempts.
        max_wait: Upper bound in seconds on the backoff between attempts.

    Raises:
        The last error once attempts are exhausted, or the first
        non-transient error.
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await broker.get_auth_headers(timeout=timeout)
    raise AssertionError("unreachable")  # pragma: no cover
