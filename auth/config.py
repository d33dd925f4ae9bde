"""Authentication configuration."""

from pydantic import BaseModel, Field, SecretStr, model_validator

from clients.vault_client import get_jwt_secrets


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    Built once at process start and passed explicitly to the token service,
    guards and use cases. Durations are in their natural units (minutes for
    short-lived credentials, hours/days for longer ones).
    """

    # Token signing. Access and refresh tokens use separate keys so a leak
    # of one cannot forge the other.
    access_token_secret: SecretStr = Field(
        ...,
        description="HMAC key for access tokens",
    )
    refresh_token_secret: SecretStr = Field(
        ...,
        description="HMAC key for refresh tokens",
    )
    jwt_algorithm: str = Field(
        default="HS256",
        pattern=r"^HS(256|384|512)$",
    )

    # Token lifetimes
    access_token_expiry_minutes: int = Field(
        default=10,
        description="Access token lifetime",
        ge=1,
        le=60,
    )
    refresh_token_expiry_days: int = Field(
        default=7,
        description="Refresh token and device session lifetime",
        ge=1,
        le=90,
    )

    # Single-use codes
    confirmation_code_expiry_hours: int = Field(
        default=24,
        description="How long registration confirmation codes remain valid",
        ge=1,
        le=168,
    )
    recovery_code_expiry_minutes: int = Field(
        default=60,
        description="How long password recovery codes remain valid",
        ge=5,
        le=1440,
    )

    # Refresh cookie
    refresh_cookie_name: str = Field(default="refreshToken")
    refresh_cookie_secure: bool = Field(
        default=True,
        description="Send the refresh cookie over HTTPS only",
    )

    # Passwords
    bcrypt_rounds: int = Field(default=12, ge=4, le=16)

    # Persistence
    store_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for any single Valkey/PostgreSQL call",
        gt=0,
        le=30,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for confirmation and recovery links",
    )
    app_name: str = Field(
        default="Auth",
        description="Application name for emails",
    )

    @model_validator(mode="after")
    def _check_secrets(self) -> "AuthConfig":
        access = self.access_token_secret.get_secret_value()
        refresh = self.refresh_token_secret.get_secret_value()
        if len(access) < 32 or len(refresh) < 32:
            raise ValueError("Token secrets must be at least 32 characters")
        if access == refresh:
            raise ValueError("Access and refresh token secrets must differ")
        return self

    @property
    def refresh_token_max_age_seconds(self) -> int:
        return self.refresh_token_expiry_days * 24 * 3600


def load_auth_config(**overrides) -> AuthConfig:
    """Build AuthConfig with signing secrets read from Vault."""
    secrets = get_jwt_secrets()
    return AuthConfig(
        access_token_secret=secrets["access_secret"],
        refresh_token_secret=secrets["refresh_secret"],
        **overrides,
    )
