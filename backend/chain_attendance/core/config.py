"""Application configuration loaded from environment variables.

Settings for the database, API, identity verification and the chain token
protocol timings. Uses pydantic-settings for validation and .env file support.
"""

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "chain_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "chain_attendance"
    database_user: str = "chain_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    # Upper bound for any single statement; a timeout surfaces as STORE_UNAVAILABLE
    database_statement_timeout_ms: int = 5000

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000

    # CORS (Security)
    # CRITICAL: Never set to ["*"] when allow_credentials=True
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Identity (bearer JWTs are issued by the external identity provider)
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "chain-attendance-idp"
    auth_audience: str = "chain-attendance"

    # Chain token protocol
    chain_token_ttl_seconds: int = 20
    snapshot_token_ttl_seconds: int = 10
    challenge_ttl_seconds: int = 30
    stall_threshold_seconds: int = 90
    online_threshold_seconds: int = 30
    max_seed_count: int = 20

    # WebSocket event delivery
    event_send_timeout_seconds: int = 5

    # Enforce-mode sessions block scans that arrive without a location
    geofence_block_missing_location: bool = True

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_scan: str = "30/minute"  # /scan, /challenge
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate protocol timings and production security requirements.

        Checks:
        - All token, challenge, stall and event timings must be positive
        - Seed count ceiling must be at least 1
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        """
        for name in (
            "chain_token_ttl_seconds",
            "snapshot_token_ttl_seconds",
            "challenge_ttl_seconds",
            "stall_threshold_seconds",
            "online_threshold_seconds",
            "event_send_timeout_seconds",
        ):
            value = getattr(self, name)
            if value <= 0:
                msg = f"{name.upper()} must be positive. Got: {value}"
                raise ValueError(msg)

        if self.max_seed_count < 1:
            msg = f"MAX_SEED_COUNT must be at least 1. Got: {self.max_seed_count}"
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters in production."
                )
                raise ValueError(msg)

        return self


settings = Settings()
