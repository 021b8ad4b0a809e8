"""Configuration management with pydantic-settings."""

from typing import Any

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Settings that must be present for the identity provider to be usable.
ESSENTIAL_KEYS = ("api_key", "auth_domain", "project_id")


class AuthgateSettings(BaseSettings):
    """authgate settings loaded from environment variables.

    All settings use the AUTHGATE_ prefix for environment variables.
    """

    # Identity provider credentials
    api_key: SecretStr | None = Field(default=None, description="Provider web API key")
    auth_domain: str | None = Field(default=None, description="Provider auth domain")
    project_id: str | None = Field(default=None, description="Provider project id")
    app_id: str | None = Field(
        default=None,
        description="Provider app id (required to exchange an App Check debug token)",
    )
    identity_toolkit_url: str = Field(
        default="https://identitytoolkit.googleapis.com",
        description="Identity Toolkit REST base URL",
    )
    app_check_url: str = Field(
        default="https://firebaseappcheck.googleapis.com",
        description="App Check REST base URL",
    )

    # Attestation and bot verification
    recaptcha_site_key: str | None = Field(
        default=None,
        description="reCAPTCHA site key; when set, attestation is required",
    )
    app_check_debug_token: SecretStr | None = Field(
        default=None,
        description="App Check debug token for local development",
    )
    widget_token_ttl: float = Field(
        default=120.0,
        description="Seconds before a bot-verification token expires",
    )

    # Flow policy
    provider_timeout: float = Field(
        default=30.0,
        description="Upper bound in seconds on every provider round trip",
    )
    min_password_length: int = Field(
        default=6,
        description="Minimum password length accepted at sign-up",
    )
    conceal_unknown_accounts: bool = Field(
        default=False,
        description="Report password-reset requests for unknown accounts as success",
    )

    # Logging configuration
    log_level: str = Field(default="WARNING", description="Logging level")
    log_format: str = Field(default="console", description="Log format: console or json")

    model_config = SettingsConfigDict(
        env_prefix="AUTHGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def attestation_required(self) -> bool:
        """Whether mutating operations need an attestation token."""
        return bool(self.recaptcha_site_key and self.recaptcha_site_key.strip())

    def missing_keys(self) -> list[str]:
        """Return env var names of essential settings that are unset or blank."""
        missing = []
        for key in ESSENTIAL_KEYS:
            value: Any = getattr(self, key)
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            if not value or not str(value).strip():
                missing.append(f"AUTHGATE_{key.upper()}")
        return missing

    @property
    def is_complete(self) -> bool:
        """Whether all essential provider settings are present."""
        return not self.missing_keys()


# Global settings instance
_settings: AuthgateSettings | None = None


def get_settings() -> AuthgateSettings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = AuthgateSettings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None
