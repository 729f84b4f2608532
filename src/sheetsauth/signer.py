"""Signed JWT assertions for the service account (jwt-bearer) grant."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from google.auth import crypt, jwt

from sheetsauth.exceptions import CredentialMalformedError
from sheetsauth.models import DelegatedIdentityCredential

# Lifetime of the assertion itself (Google rejects anything over 1 hour)
ASSERTION_LIFETIME = 3600

_PEM_RE = re.compile(
    r"-----BEGIN (?P<label>[A-Z ]+)-----(?P<body>.*?)-----END (?P=label)-----",
    re.DOTALL,
)


@dataclass(frozen=True)
class SignedAssertion:
    """A compact JWT: header.claims.signature."""

    value: str
    issued_at: int
    expires_at: int

    @property
    def signing_input(self) -> str:
        """The header and claims segments that the signature covers."""
        return self.value.rsplit(".", 1)[0]

    def __str__(self) -> str:
        return self.value


def _malformed(message: str) -> CredentialMalformedError:
    return CredentialMalformedError(message, missing_fields=("private_key",))


def load_signer(private_key: str, key_id: str | None = None) -> crypt.Signer:
    """Parse a PEM private key into an RS256 signer.

    Raises:
        CredentialMalformedError: If the PEM delimiters are missing, the body
            is not base64, the key cannot be loaded, or it is not an RSA key.
    """
    pem = private_key.replace("\\n", "\n").strip()
    match = _PEM_RE.search(pem)
    if not match:
        raise _malformed("Private key is not in PEM format (missing BEGIN/END lines)")

    body = "".join(match.group("body").split())
    try:
        base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise _malformed(f"Private key body is not valid base64: {e}") from e

    block = match.group(0)
    try:
        key = serialization.load_pem_private_key(block.encode("ascii"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise _malformed(f"Private key could not be loaded: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise _malformed("Private key must be an RSA key")
    return crypt.RSASigner.from_string(block, key_id=key_id)


class JWTSigner:
    """Builds RS256-signed assertions from a service account credential.

    Parsed keys are cached per credential, so repeated mints do not re-parse
    the PEM.
    """

    def __init__(self, lifetime: int = ASSERTION_LIFETIME) -> None:
        self._lifetime = lifetime
        self._signers: dict[tuple[str, str], crypt.Signer] = {}

    def claims(
        self, credential: DelegatedIdentityCredential, scope: str, now: float
    ) -> dict[str, Any]:
        """Return the assertion claims for a credential at unix time `now`."""
        issued_at = int(now)
        return {
            "iss": credential.client_email,
            "scope": scope,
            "aud": credential.token_uri,
            "iat": issued_at,
            "exp": issued_at + self._lifetime,
        }

    def mint(
        self, credential: DelegatedIdentityCredential, scope: str, now: float
    ) -> SignedAssertion:
        """Build and sign an assertion.

        Args:
            credential: Service account credential supplying issuer, audience
                and key.
            scope: Space-separated OAuth scopes requested.
            now: Current unix time; becomes `iat`.

        Raises:
            CredentialMalformedError: If the private key is unusable.
        """
        signer = self._get_signer(credential)
        claims = self.claims(credential, scope, now)
        token = jwt.encode(signer, claims, key_id=credential.private_key_id)
        return SignedAssertion(
            value=token.decode("ascii"),
            issued_at=claims["iat"],
            expires_at=claims["exp"],
        )

    def _get_signer(self, credential: DelegatedIdentityCredential) -> crypt.Signer:
        key = (credential.private_key_id, credential.private_key)
        signer = self._signers.get(key)
        if signer is None:
            signer = load_signer(credential.private_key, credential.private_key_id)
            self._signers = {key: signer}
        return signer
