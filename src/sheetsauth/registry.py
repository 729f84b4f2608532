"""Static metadata for each authentication mode.

The registry answers three questions about a mode: can it write, what is it
called, and what does a valid credential for it look like. Credential input
from a user (a parsed key file, a form) is checked here before it reaches
the broker or the store.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sheetsauth.exceptions import CredentialMalformedError
from sheetsauth.models import (
    SERVICE_ACCOUNT_TYPE,
    AuthMode,
    AuthorizationCodeCredential,
    Credential,
    DelegatedIdentityCredential,
)

# Keys a service account key file must carry, in key-file spelling
DELEGATED_IDENTITY_FIELDS = (
    "type",
    "client_email",
    "private_key",
    "token_uri",
    "private_key_id",
    "project_id",
)

# The token exchange only speaks HTTP
_TOKEN_URI_SCHEMES = ("https://", "http://")

# Keys of the stored OAuth client record
AUTHORIZATION_CODE_FIELDS = ("clientId", "clientSecret")


def _is_filled(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _missing(candidate: Mapping[str, Any], fields: Iterable[str]) -> tuple[str, ...]:
    return tuple(name for name in fields if not _is_filled(candidate.get(name)))


def _as_mapping(candidate: Any) -> Mapping[str, Any] | None:
    """Normalize a typed credential or raw mapping to the key-file spelling."""
    if isinstance(candidate, (DelegatedIdentityCredential, AuthorizationCodeCredential)):
        return candidate.to_dict()
    if isinstance(candidate, Mapping):
        return candidate
    return None


def _delegated_identity_problems(candidate: Any) -> tuple[str, ...]:
    if isinstance(candidate, AuthorizationCodeCredential):
        return DELEGATED_IDENTITY_FIELDS
    data = _as_mapping(candidate)
    if data is None:
        return DELEGATED_IDENTITY_FIELDS
    missing = _missing(data, DELEGATED_IDENTITY_FIELDS)
    if "type" not in missing and data.get("type") != SERVICE_ACCOUNT_TYPE:
        missing = ("type", *missing)
    if "token_uri" not in missing and not data["token_uri"].startswith(_TOKEN_URI_SCHEMES):
        missing = (*missing, "token_uri")
    return missing


def _authorization_code_problems(candidate: Any) -> tuple[str, ...]:
    if isinstance(candidate, DelegatedIdentityCredential):
        return AUTHORIZATION_CODE_FIELDS
    data = _as_mapping(candidate)
    if data is None:
        return AUTHORIZATION_CODE_FIELDS
    return _missing(data, AUTHORIZATION_CODE_FIELDS)


def _no_credential_problems(candidate: Any) -> tuple[str, ...]:
    return () if candidate is None else ("<none expected>",)


@dataclass(frozen=True)
class ModeSpec:
    """Registry entry for one authentication mode."""

    mode: AuthMode
    display_name: str
    can_write: bool
    credential_type: type | None
    required_fields: tuple[str, ...]
    problems: Callable[[Any], tuple[str, ...]]


_SPECS: dict[AuthMode, ModeSpec] = {
    AuthMode.API_KEY_ONLY: ModeSpec(
        mode=AuthMode.API_KEY_ONLY,
        display_name="API key (read-only)",
        can_write=False,
        credential_type=None,
        required_fields=(),
        problems=_no_credential_problems,
    ),
    AuthMode.DELEGATED_IDENTITY: ModeSpec(
        mode=AuthMode.DELEGATED_IDENTITY,
        display_name="Service account (read-write)",
        can_write=True,
        credential_type=DelegatedIdentityCredential,
        required_fields=DELEGATED_IDENTITY_FIELDS,
        problems=_delegated_identity_problems,
    ),
    AuthMode.AUTHORIZATION_CODE: ModeSpec(
        mode=AuthMode.AUTHORIZATION_CODE,
        display_name="Custom OAuth client (read-write)",
        can_write=True,
        credential_type=AuthorizationCodeCredential,
        required_fields=AUTHORIZATION_CODE_FIELDS,
        problems=_authorization_code_problems,
    ),
    AuthMode.MANAGED_INTERACTIVE: ModeSpec(
        mode=AuthMode.MANAGED_INTERACTIVE,
        display_name="Google sign-in (read-write)",
        can_write=True,
        credential_type=None,
        required_fields=(),
        problems=_no_credential_problems,
    ),
}


class AuthModeRegistry:
    """Lookup table of ModeSpec entries. Stateless."""

    def __init__(self, specs: Mapping[AuthMode, ModeSpec] | None = None) -> None:
        self._specs = dict(specs or _SPECS)

    def get(self, mode: AuthMode) -> ModeSpec:
        return self._specs[mode]

    def display_name(self, mode: AuthMode) -> str:
        return self._specs[mode].display_name

    def can_write(self, mode: AuthMode) -> bool:
        return self._specs[mode].can_write

    def validate(self, mode: AuthMode, candidate: Any) -> bool:
        """Check that a candidate credential fits the mode exactly.

        Accepts the typed record or a raw mapping in key-file spelling. A
        missing or empty required field, a record of another mode, or a
        wrong `type` discriminator makes the candidate invalid.
        """
        return not self._specs[mode].problems(candidate)

    def parse(self, mode: AuthMode, candidate: Any) -> Credential:
        """Validate a candidate and return it as the mode's typed record.

        Raises:
            CredentialMalformedError: If the mode takes no credential or the
                candidate is invalid. The message names the bad fields.
        """
        spec = self._specs[mode]
        if spec.credential_type is None:
            raise CredentialMalformedError(f"{spec.display_name} does not use credentials")

        problems = spec.problems(candidate)
        if problems:
            if mode is AuthMode.DELEGATED_IDENTITY and "type" in problems:
                message = "Invalid service account key file: 'type' must be 'service_account'"
            else:
                fields = ", ".join(problems)
                message = f"Invalid {spec.display_name} credentials: missing or invalid {fields}"
            raise CredentialMalformedError(message, missing_fields=problems)

        if isinstance(candidate, spec.credential_type):
            return candidate

        data = _as_mapping(candidate)
        assert data is not None
        if mode is AuthMode.DELEGATED_IDENTITY:
            return DelegatedIdentityCredential(
                client_email=data["client_email"],
                private_key=data["private_key"],
                token_uri=data["token_uri"],
                private_key_id=data["private_key_id"],
                project_id=data["project_id"],
                type=data["type"],
            )
        return AuthorizationCodeCredential(
            client_id=data["clientId"].strip(),
            client_secret=data["clientSecret"].strip(),
        )


REGISTRY = AuthModeRegistry()


class IdentityAllowlist:
    """Static set of identities permitted to use managed interactive sign-in.

    This is a membership test only; callers decide whether to enforce it.
    """

    def __init__(self, identities: Iterable[str] = ()) -> None:
        self._identities = frozenset(i.strip().lower() for i in identities if i.strip())

    def is_permitted(self, identity: str) -> bool:
        return identity.strip().lower() in self._identities

    def info(self) -> dict[str, Any]:
        """Summary for display without revealing the identities."""
        return {"has_allowlist": bool(self._identities), "count": len(self._identities)}
