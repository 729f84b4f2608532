"""Durable storage for the authentication mode and raw credentials.

The record is one JSON document in the OS keyring (macOS Keychain, Windows
Credential Locker, or Linux Secret Service):

    {
        "mode": "delegated_identity",
        "delegatedIdentityCredential": {...service account key file...},
        "authorizationCodeCredential": {"clientId": "...", "clientSecret": "..."}
    }

Tokens are never written. Loading never fails: anything unreadable falls
back to read-only API key mode.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from loguru import logger

from sheetsauth.exceptions import CredentialMalformedError
from sheetsauth.models import (
    AuthMode,
    AuthorizationCodeCredential,
    AuthState,
    DelegatedIdentityCredential,
)
from sheetsauth.registry import REGISTRY, AuthModeRegistry

KEYRING_SERVICE = "sheetsauth"
KEYRING_USERNAME = "auth_config"

MODE_KEY = "mode"
DELEGATED_IDENTITY_KEY = "delegatedIdentityCredential"
AUTHORIZATION_CODE_KEY = "authorizationCodeCredential"

PERSISTED_KEYS = (MODE_KEY, DELEGATED_IDENTITY_KEY, AUTHORIZATION_CODE_KEY)


class CredentialStore:
    """Persists mode and credentials in the OS keyring.

    Args:
        service: Keyring service name.
        username: Keyring entry name under the service.
        registry: Registry used to validate stored credentials on load.
    """

    def __init__(
        self,
        service: str = KEYRING_SERVICE,
        username: str = KEYRING_USERNAME,
        registry: AuthModeRegistry = REGISTRY,
    ) -> None:
        self._service = service
        self._username = username
        self._registry = registry

    def load(self) -> AuthState:
        """Rebuild mode and credentials from the keyring.

        Returns API key mode when nothing is stored or the record is
        unreadable. A credential that fails validation is dropped; if the
        stored mode needed it, the mode falls back to API key as well.
        """
        record = self._read_record()
        if record is None:
            return AuthState()

        state = AuthState()

        delegated = record.get(DELEGATED_IDENTITY_KEY)
        if delegated is not None:
            state.delegated_identity = self._parse_credential(
                AuthMode.DELEGATED_IDENTITY, delegated
            )

        auth_code = record.get(AUTHORIZATION_CODE_KEY)
        if auth_code is not None:
            state.authorization_code = self._parse_credential(
                AuthMode.AUTHORIZATION_CODE, auth_code
            )

        try:
            mode = AuthMode(record.get(MODE_KEY, AuthMode.API_KEY_ONLY.value))
        except ValueError:
            logger.warning("Unknown stored auth mode", extra={"mode": str(record.get(MODE_KEY))})
            mode = AuthMode.API_KEY_ONLY

        needs_credential = self._registry.get(mode).credential_type is not None
        if needs_credential and state.credential_for(mode) is None:
            logger.warning(
                "Stored auth mode has no usable credential, using API key mode",
                extra={"mode": mode.value},
            )
            mode = AuthMode.API_KEY_ONLY
        state.mode = mode
        return state

    def save(self, partial: Mapping[str, Any]) -> None:
        """Merge mode and credentials into the stored record.

        Keys other than mode and the two credential keys (cached tokens,
        expiry times) are ignored. Credentials may be typed records or raw
        mappings. A value of None removes that entry.
        """
        current = self._read_record() or {MODE_KEY: AuthMode.API_KEY_ONLY.value}

        for key in PERSISTED_KEYS:
            if key not in partial:
                continue
            value = partial[key]
            if value is None:
                current.pop(key, None)
            else:
                current[key] = _to_record_value(value)

        dropped = sorted(set(partial) - set(PERSISTED_KEYS))
        if dropped:
            logger.debug("Ignoring non-persistent auth fields", extra={"fields": dropped})

        try:
            keyring.set_password(self._service, self._username, json.dumps(current))
        except KeyringError as e:
            logger.warning("Failed to save auth config", extra={"error": str(e)})

    def clear(self) -> None:
        """Remove the stored record."""
        try:
            keyring.delete_password(self._service, self._username)
        except PasswordDeleteError:
            pass  # Nothing stored
        except KeyringError as e:
            logger.warning("Failed to clear auth config", extra={"error": str(e)})

    def _read_record(self) -> dict[str, Any] | None:
        try:
            raw = keyring.get_password(self._service, self._username)
        except KeyringError as e:
            logger.warning("Failed to read auth config", extra={"error": str(e)})
            return None

        if not raw:
            return None

        try:
            record = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Stored auth config is not valid JSON", extra={"error": str(e)})
            return None

        if not isinstance(record, dict):
            logger.warning("Stored auth config has unexpected shape")
            return None
        return record

    def _parse_credential(self, mode: AuthMode, value: Any) -> Any:
        try:
            return self._registry.parse(mode, value)
        except CredentialMalformedError as e:
            logger.warning(
                "Dropping invalid stored credential",
                extra={"mode": mode.value, "missing_fields": list(e.missing_fields)},
            )
            return None


def _to_record_value(value: Any) -> Any:
    if isinstance(value, AuthMode):
        return value.value
    if isinstance(value, (DelegatedIdentityCredential, AuthorizationCodeCredential)):
        return value.to_dict()
    if isinstance(value, Mapping):
        return dict(value)
    return value
