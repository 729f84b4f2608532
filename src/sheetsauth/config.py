"""Configuration using pydantic-settings.

Values come from environment variables prefixed with SHEETS_AUTH_ or from a
.env file. Nothing here is required: defaults give a read-only client that
talks to Google's public endpoints.
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SPREADSHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    Environment variables:
    - SHEETS_AUTH_API_KEY: API key appended to read-only requests
    - SHEETS_AUTH_MANAGED_IDENTITY_ALLOWLIST: identities allowed to use
      managed interactive sign-in (comma-separated)
    - SHEETS_AUTH_REQUEST_TIMEOUT: seconds before a token exchange gives up
    """

    model_config = SettingsConfigDict(
        env_prefix="SHEETS_AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Build-time API key for read-only access to public spreadsheets
    api_key: str = ""

    scope: str = SPREADSHEETS_SCOPE
    oauth_token_endpoint: str = "https://oauth2.googleapis.com/token"
    oauth_authorize_endpoint: str = "https://accounts.google.com/o/oauth2/v2/auth"

    request_timeout: float = 30.0
    early_expiry_buffer: int = 60
    assertion_lifetime: int = 3600

    # Where the durable auth record lives in the OS keyring
    keyring_service: str = "sheetsauth"
    keyring_username: str = "auth_config"

    # Comma-separated, e.g. "alice@example.com,bob@example.com"
    managed_identity_allowlist: str = ""

    # Attempts used by the caller-side retry policy
    retry_attempts: int = 3

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def get_allowlist(self) -> list[str]:
        """Get permitted identities for managed interactive sign-in.

        Returns empty list if no allowlist is configured.
        """
        if not self.managed_identity_allowlist:
            return []
        return [
            i.strip().lower() for i in self.managed_identity_allowlist.split(",") if i.strip()
        ]

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known value."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @field_validator("request_timeout")
    @classmethod
    def validate_request_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be positive")
        return v

    @field_validator("early_expiry_buffer", "assertion_lifetime")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retry_attempts must be at least 1")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the process.
    """
    return Settings()
