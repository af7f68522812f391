"""
tests/unit/test_config.py — Production guard and AuthSettings construction.
"""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest

from authcore import config
from authcore.config import AuthSettings, validate_production_config

STRONG_SECRET = "s" * 48


def _app(**overrides):
    values = {
        "SQLALCHEMY_DATABASE_URI": "postgresql://db/authcore",
        "SECRET_KEY": STRONG_SECRET,
        "JWT_SECRET_KEY": STRONG_SECRET,
        "BCRYPT_LOG_ROUNDS": 12,
    }
    values.update(overrides)
    return SimpleNamespace(config=values)


class TestValidateProductionConfig:

    def test_complete_config_passes(self):
        validate_production_config(_app())

    @pytest.mark.parametrize("overrides, fragment", [
        ({"SQLALCHEMY_DATABASE_URI": ""}, "DATABASE_URL"),
        ({"SECRET_KEY": "change-me-in-production"}, "SECRET_KEY"),
        ({"JWT_SECRET_KEY": "change-me-in-production"}, "JWT_SECRET_KEY"),
        ({"JWT_SECRET_KEY": "too-short"}, "at least 32 bytes"),
        ({"BCRYPT_LOG_ROUNDS": 10}, "BCRYPT_LOG_ROUNDS"),
    ])
    def test_insecure_values_are_rejected(self, overrides, fragment):
        with pytest.raises(ValueError, match=fragment):
            validate_production_config(_app(**overrides))


class TestAuthSettings:

    def test_from_mapping_reads_every_field(self):
        settings = AuthSettings.from_mapping({
            "JWT_ACCESS_TOKEN_EXPIRES": timedelta(minutes=5),
            "JWT_REFRESH_TOKEN_EXPIRES": timedelta(days=1),
            "BCRYPT_LOG_ROUNDS": 4,
            "EMAIL_VERIFICATION_EXPIRES_HOURS": 48,
            "PASSWORD_RESET_EXPIRES_HOURS": 2,
        })

        assert settings == AuthSettings(
            access_token_ttl=timedelta(minutes=5),
            refresh_token_ttl=timedelta(days=1),
            bcrypt_rounds=4,
            email_verification_ttl_hours=48,
            password_reset_ttl_hours=2,
        )

    def test_from_mapping_defaults(self):
        settings = AuthSettings.from_mapping({
            "JWT_ACCESS_TOKEN_EXPIRES": timedelta(minutes=15),
            "JWT_REFRESH_TOKEN_EXPIRES": timedelta(days=7),
        })

        assert settings.bcrypt_rounds == 12
        assert settings.email_verification_ttl_hours == 24
        assert settings.password_reset_ttl_hours == 1

    def test_settings_are_immutable(self):
        settings = AuthSettings(timedelta(minutes=15), timedelta(days=7))
        with pytest.raises(AttributeError):
            settings.bcrypt_rounds = 4


def test_testing_config_is_registered():
    assert config.config_by_name["testing"] is config.TestingConfig
    assert config.TestingConfig.TESTING is True
    assert config.TestingConfig.TOKEN_SWEEP_INTERVAL_SECONDS == 0
