"""Shared test fixtures for sheetsauth."""

from __future__ import annotations

from typing import Any

import keyring
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from sheetsauth.config import Settings
from sheetsauth.models import DelegatedIdentityCredential
from tests.fakes import FakeClock, FakeTokenExchanger, InMemoryKeyring


@pytest.fixture(autouse=True)
def memory_keyring() -> InMemoryKeyring:
    """Never let a test reach the real OS keyring."""
    backend = InMemoryKeyring()
    keyring.set_keyring(backend)
    return backend


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def service_account_info(private_key_pem: str) -> dict[str, Any]:
    """A service account key file as Google issues it (trimmed)."""
    return {
        "type": "service_account",
        "project_id": "test-project",
        "private_key_id": "key-id-1",
        "private_key": private_key_pem,
        "client_email": "sheets-bot@test-project.iam.gserviceaccount.com",
        "client_id": "1234567890",
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
    }


@pytest.fixture
def delegated_credential(private_key_pem: str) -> DelegatedIdentityCredential:
    return DelegatedIdentityCredential(
        client_email="sheets-bot@test-project.iam.gserviceaccount.com",
        private_key=private_key_pem,
        token_uri="https://oauth2.googleapis.com/token",
        private_key_id="key-id-1",
        project_id="test-project",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, managed_identity_allowlist="Alice@Example.com,bob@example.com")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_exchanger() -> FakeTokenExchanger:
    return FakeTokenExchanger()
