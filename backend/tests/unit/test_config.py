"""Tests for Settings validation."""

import pytest
from pydantic import SecretStr
from pydantic import ValidationError as PydanticValidationError

from chain_attendance.core.config import Settings

_STRONG_SECRET = "s" * 40


class TestProtocolTimings:
    """Token, challenge and stall timings must be positive."""

    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.chain_token_ttl_seconds == 20
        assert settings.snapshot_token_ttl_seconds == 10
        assert settings.challenge_ttl_seconds == 30
        assert settings.stall_threshold_seconds == 90
        assert settings.online_threshold_seconds == 30
        assert settings.max_seed_count == 20
        assert settings.event_send_timeout_seconds == 5
        assert settings.geofence_block_missing_location is True

    @pytest.mark.parametrize(
        "field",
        [
            "chain_token_ttl_seconds",
            "snapshot_token_ttl_seconds",
            "challenge_ttl_seconds",
            "stall_threshold_seconds",
            "online_threshold_seconds",
            "event_send_timeout_seconds",
        ],
    )
    def test_non_positive_rejected(self, field: str) -> None:
        with pytest.raises(PydanticValidationError, match=field.upper()):
            Settings(_env_file=None, **{field: 0})

    def test_seed_count_must_be_positive(self) -> None:
        with pytest.raises(PydanticValidationError, match="MAX_SEED_COUNT"):
            Settings(_env_file=None, max_seed_count=0)


class TestSecurityChecks:
    """CORS and production secrets."""

    def test_wildcard_cors_rejected(self) -> None:
        with pytest.raises(PydanticValidationError, match="wildcard"):
            Settings(_env_file=None, allowed_origins=["*"])

    def test_default_password_rejected_in_production(self) -> None:
        with pytest.raises(PydanticValidationError, match="DATABASE_PASSWORD"):
            Settings(
                _env_file=None,
                environment="production",
                auth_secret=SecretStr(_STRONG_SECRET),
            )

    def test_short_auth_secret_rejected_in_production(self) -> None:
        with pytest.raises(PydanticValidationError, match="AUTH_SECRET"):
            Settings(
                _env_file=None,
                environment="production",
                database_password="a-real-password",
                auth_secret=SecretStr("short"),
            )

    def test_production_accepts_strong_config(self) -> None:
        settings = Settings(
            _env_file=None,
            environment="production",
            database_password="a-real-password",
            auth_secret=SecretStr(_STRONG_SECRET),
        )
        assert settings.environment == "production"

    def test_database_url_uses_asyncpg(self) -> None:
        settings = Settings(_env_file=None, database_host="db", database_port=6543)
        assert settings.database_url.startswith("postgresql+asyncpg://")
        assert "@db:6543/" in settings.database_url
