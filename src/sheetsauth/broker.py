"""Token broker: the single source of request credentials for Sheets calls.

The broker holds the live AuthState for a process and answers one question
for downstream HTTP code: what do I attach to this request? In API key mode
the answer is the USE_URL_KEY sentinel; in every other mode it is an
Authorization header, minted or reused as needed.

Per-mode lifecycle:

    Unconfigured -> Configured -> TokenValid -> TokenExpired (-> Configured)

Key design decisions:
- One broker instance per process, passed to callers (no module global)
- Tokens are minted lazily on the first get_auth_headers() call
- At most one refresh per mode is in flight; concurrent callers share it
- Every invalidation bumps a per-mode generation so a refresh that started
  before a credential change or mode switch never lands in the cache
- Only service account mode mints tokens; the two OAuth modes fail with
  ReauthRequiredError once their token expires
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from loguru import logger

from sheetsauth.config import Settings, get_settings
from sheetsauth.exceptions import (
    AuthFailedError,
    CredentialMalformedError,
    NotConfiguredError,
    ReauthRequiredError,
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
    UseUrlKey,
)
from sheetsauth.registry import REGISTRY, AuthModeRegistry, IdentityAllowlist
from sheetsauth.signer import JWTSigner, load_signer
from sheetsauth.store import (
    AUTHORIZATION_CODE_KEY,
    DELEGATED_IDENTITY_KEY,
    MODE_KEY,
    CredentialStore,
)
from sheetsauth.urls import build_authorization_url

AuthHeaders = dict[str, str]

# Modes whose token comes from an external sign-in flow
EXTERNAL_TOKEN_MODES = (AuthMode.AUTHORIZATION_CODE, AuthMode.MANAGED_INTERACTIVE)


def _bearer(token: CachedToken) -> AuthHeaders:
    return {"Authorization": f"Bearer {token.access_token}"}


class TokenBroker:
    """Owns authentication state and hands out request headers.

    Args:
        state: Initial state, usually from CredentialStore.load().
        store: Where mode and credential changes are persisted (optional).
        signer: JWT signer for service account mode.
        exchanger: Token exchanger; created from settings if omitted and
            then closed by close().
        settings: Settings instance; defaults to get_settings().
        registry: Mode registry used to validate credentials.
        allowlist: Identities allowed to use managed sign-in; defaults to the
            configured allowlist.
        clock: Returns the current unix time (injectable for testing).
    """

    def __init__(
        self,
        state: AuthState | None = None,
        *,
        store: CredentialStore | None = None,
        signer: JWTSigner | None = None,
        exchanger: TokenExchanger | None = None,
        settings: Settings | None = None,
        registry: AuthModeRegistry = REGISTRY,
        allowlist: IdentityAllowlist | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_settings()
        self._state = state or AuthState()
        self._store = store
        self._signer = signer or JWTSigner(lifetime=self._settings.assertion_lifetime)
        self._owns_exchanger = exchanger is None
        self._exchanger = exchanger or TokenExchanger(
            token_endpoint=self._settings.oauth_token_endpoint,
            timeout=self._settings.request_timeout,
        )
        self._registry = registry
        self._allowlist = allowlist or IdentityAllowlist(self._settings.get_allowlist())
        self._clock = clock
        self._buffer = self._settings.early_expiry_buffer
        self._inflight: dict[AuthMode, asyncio.Task[CachedToken]] = {}
        self._generations: defaultdict[AuthMode, int] = defaultdict(int)

    @classmethod
    def from_store(cls, store: CredentialStore, **kwargs: Any) -> TokenBroker:
        """Create a broker seeded from, and persisting to, a store."""
        return cls(store.load(), store=store, **kwargs)

    @property
    def mode(self) -> AuthMode:
        return self._state.mode

    @property
    def state(self) -> AuthState:
        return self._state

    def can_write(self) -> bool:
        return self._registry.can_write(self._state.mode)

    def is_permitted(self, identity: str) -> bool:
        """Check an identity against the managed sign-in allowlist."""
        return self._allowlist.is_permitted(identity)

    # State transitions

    def set_mode(self, mode: AuthMode | str) -> None:
        """Switch the active mode.

        Does not mint a token. Drops the cached token of the mode being left;
        stored credentials of all modes are kept.
        """
        mode = AuthMode(mode)
        previous = self._state.mode
        if mode is previous:
            return

        self._invalidate(previous)
        self._state.mode = mode
        self._persist({MODE_KEY: mode})
        logger.info("Auth mode changed", extra={"from_mode": previous.value, "to_mode": mode.value})

    def set_credentials(self, mode: AuthMode | str, credential: Any) -> None:
        """Validate and store the credential for a mode.

        Args:
            mode: DELEGATED_IDENTITY or AUTHORIZATION_CODE.
            credential: Typed record or raw mapping (a parsed key file, or
                {"clientId": ..., "clientSecret": ...}).

        Raises:
            CredentialMalformedError: If the credential does not fit the mode
                or its private key cannot be parsed. Nothing is stored.
        """
        mode = AuthMode(mode)
        parsed = self._registry.parse(mode, credential)

        if isinstance(parsed, DelegatedIdentityCredential):
            load_signer(parsed.private_key, parsed.private_key_id)
            self._state.delegated_identity = parsed
            key = DELEGATED_IDENTITY_KEY
            identity = parsed.client_email
        else:
            self._state.authorization_code = parsed
            key = AUTHORIZATION_CODE_KEY
            identity = parsed.client_id

        self._invalidate(mode)
        self._persist({key: parsed})
        logger.info("Credentials updated", extra={"mode": mode.value, "identity": identity})

    def set_token(self, token: str, expires_at: float, mode: AuthMode | str) -> None:
        """Accept a token produced by an external sign-in flow.

        Args:
            token: The bearer token.
            expires_at: Unix timestamp at which the issuer says it expires.
            mode: AUTHORIZATION_CODE or MANAGED_INTERACTIVE.
        """
        mode = AuthMode(mode)
        if mode not in EXTERNAL_TOKEN_MODES:
            raise ValueError(f"Tokens cannot be set for mode {mode.value}")
        if not token:
            raise ValueError("Token must not be empty")

        self._invalidate(mode)
        self._state.tokens[mode] = CachedToken(access_token=token, expires_at=float(expires_at))
        logger.info(
            "Token set by sign-in flow",
            extra={"mode": mode.value, "expires_in": int(expires_at - self._clock())},
        )

    def logout(self, mode: AuthMode | str | None = None) -> None:
        """Drop cached tokens for one mode, or for all modes when None."""
        modes = list(AuthMode) if mode is None else [AuthMode(mode)]
        for m in modes:
            self._invalidate(m)
        logger.info("Logged out", extra={"modes": [m.value for m in modes]})

    # Header acquisition

    async def get_auth_headers(self, timeout: float | None = None) -> AuthHeaders | UseUrlKey:
        """Return what downstream requests must carry to authenticate.

        Args:
            timeout: Seconds to wait for a token refresh; defaults to
                settings.request_timeout.

        Returns:
            USE_URL_KEY in API key mode, else {"Authorization": "Bearer ..."}.

        Raises:
            NotConfiguredError: The active mode's credential is missing.
            CredentialMalformedError: The service account key is unusable.
            AuthFailedError: The token exchange failed or timed out.
            ReauthRequiredError: An OAuth-mode token is missing or expired.
        """
        mode = self._state.mode
        if mode is AuthMode.API_KEY_ONLY:
            return USE_URL_KEY

        token = self._state.tokens.get(mode)
        if token is not None and token.is_valid(self._clock(), self._buffer):
            return _bearer(token)

        if mode is AuthMode.DELEGATED_IDENTITY:
            token = await self._refresh_delegated_identity(timeout)
            return _bearer(token)

        raise self._missing_token_error(mode, token)

    async def complete_authorization(
        self, code: str, redirect_uri: str, timeout: float | None = None
    ) -> CachedToken:
        """Exchange an authorization code and cache the resulting token.

        The refresh token, if returned, is kept on the CachedToken but is
        never used to renew it.
        """
        mode = AuthMode.AUTHORIZATION_CODE
        credential = self._state.authorization_code
        if credential is None:
            raise NotConfiguredError("OAuth client ID and secret are not configured", mode)

        generation = self._generations[mode]
        now = self._clock()
        grant = await self._with_timeout(
            self._exchanger.exchange_authorization_code(
                credential.client_id, credential.client_secret, code, redirect_uri
            ),
            timeout,
        )

        token = CachedToken(
            access_token=grant.access_token,
            expires_at=now + grant.expires_in,
            refresh_token=grant.refresh_token,
        )
        if self._generations[mode] == generation:
            self._state.tokens[mode] = token
        logger.info(
            "Authorization code exchanged",
            extra={"client_id": credential.client_id, "expires_in": grant.expires_in},
        )
        return token

    def authorization_url(self, redirect_uri: str, state: str | None = None) -> str:
        """Build the consent URL for the stored OAuth client."""
        credential: AuthorizationCodeCredential | None = self._state.authorization_code
        if credential is None:
            raise NotConfiguredError(
                "OAuth client ID and secret are not configured", AuthMode.AUTHORIZATION_CODE
            )
        return build_authorization_url(
            credential.client_id,
            redirect_uri,
            scope=self._settings.scope,
            endpoint=self._settings.oauth_authorize_endpoint,
            state=state,
        )

    def get_status_summary(self) -> StatusSummary:
        """Describe the current state without any network activity."""
        mode = self._state.mode
        token = self._state.tokens.get(mode)
        token_valid = token is not None and token.is_valid(self._clock(), self._buffer)

        if mode is AuthMode.API_KEY_ONLY:
            configured, token_valid = True, True
        elif mode is AuthMode.MANAGED_INTERACTIVE:
            configured = True
        else:
            configured = self._state.credential_for(mode) is not None

        return StatusSummary(
            mode=mode,
            mode_name=self._registry.display_name(mode),
            can_write=self._registry.can_write(mode),
            is_configured=configured,
            is_token_valid=token_valid,
        )

    async def close(self) -> None:
        """Release the exchanger's HTTP client if the broker created it."""
        if self._owns_exchanger:
            await self._exchanger.close()

    # Internals

    async def _refresh_delegated_identity(self, timeout: float | None) -> CachedToken:
        mode = AuthMode.DELEGATED_IDENTITY
        credential = self._state.delegated_identity
        if credential is None:
            raise NotConfiguredError("Service account key is not configured", mode)

        task = self._inflight.get(mode)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._mint_delegated_identity(credential, self._generations[mode])
            )
            self._inflight[mode] = task
            task.add_done_callback(functools.partial(self._on_refresh_done, mode))

        # shield: a caller timing out or being cancelled leaves the refresh running
        return await self._with_timeout(asyncio.shield(task), timeout)

    async def _mint_delegated_identity(
        self, credential: DelegatedIdentityCredential, generation: int
    ) -> CachedToken:
        mode = AuthMode.DELEGATED_IDENTITY
        now = self._clock()

        try:
            # RSA signing is CPU-bound; keep it off the event loop
            assertion = await asyncio.to_thread(
                self._signer.mint, credential, self._settings.scope, now
            )
        except CredentialMalformedError:
            logger.warning(
                "Service account key is malformed",
                extra={"client_email": credential.client_email},
            )
            raise
        except Exception as e:
            logger.error(
                "Failed to sign assertion",
                extra={"client_email": credential.client_email, "error": str(e)},
            )
            raise AuthFailedError(f"Failed to sign service account assertion: {e}") from e

        grant = await self._exchanger.exchange_assertion(credential.token_uri, assertion)
        token = CachedToken(access_token=grant.access_token, expires_at=now + grant.expires_in)

        if self._generations[mode] == generation:
            self._state.tokens[mode] = token
            logger.info(
                "Service account token minted",
                extra={"client_email": credential.client_email, "expires_in": grant.expires_in},
            )
        else:
            logger.info(
                "Discarding token minted for superseded credentials",
                extra={"client_email": credential.client_email},
            )
        return token

    def _on_refresh_done(self, mode: AuthMode, task: asyncio.Task[CachedToken]) -> None:
        if self._inflight.get(mode) is task:
            del self._inflight[mode]
        if not task.cancelled():
            # Retrieve so an error nobody awaited is not reported as unhandled
            task.exception()

    async def _with_timeout(self, awaitable: Any, timeout: float | None) -> Any:
        if timeout is None:
            timeout = self._settings.request_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except TimeoutError as e:
            raise AuthFailedError(
                f"Token request timed out after {timeout:g} seconds", retryable=True
            ) from e

    def _invalidate(self, mode: AuthMode) -> None:
        self._generations[mode] += 1
        self._state.tokens.pop(mode, None)
        self._inflight.pop(mode, None)

    def _missing_token_error(
        self, mode: AuthMode, token: CachedToken | None
    ) -> NotConfiguredError | ReauthRequiredError:
        if token is not None:
            return ReauthRequiredError("Sign-in has expired. Please sign in again.", mode)
        if mode is AuthMode.AUTHORIZATION_CODE and self._state.authorization_code is None:
            return NotConfiguredError("OAuth client ID and secret are not configured", mode)
        return ReauthRequiredError("Not signed in. Please sign in with Google first.", mode)

    def _persist(self, partial: dict[str, Any]) -> None:
        if self._store is not None:
            self._store.save(partial)
