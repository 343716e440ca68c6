"""
Unit tests for application settings.
"""
import pytest
from pydantic import ValidationError

from tribelab.core.config import Settings


class TestSignatureBypassGuard:
    """allow_unverified_signatures is refused in production."""

    def test_production_rejects_bypass(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, environment="production", allow_unverified_signatures=True)

    def test_development_allows_bypass(self):
        settings = Settings(_env_file=None, environment="development", allow_unverified_signatures=True)

        assert settings.allow_unverified_signatures is True
        assert settings.is_development is True

    def test_production_defaults_to_enforced_signatures(self):
        settings = Settings(_env_file=None, environment="production")

        assert settings.allow_unverified_signatures is False
        assert settings.is_production is True


class TestListParsing:
    def test_admin_emails_from_comma_string(self):
        settings = Settings(_env_file=None, admin_emails="a@x.test, b@x.test,")

        assert settings.admin_emails == ["a@x.test", "b@x.test"]

    def test_cors_origins_from_comma_string(self):
        settings = Settings(_env_file=None, backend_cors_origins="http://a.test, http://b.test")

        assert settings.backend_cors_origins == ["http://a.test", "http://b.test"]

    def test_plan_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.trial_period_days == 14
        assert settings.trial_reminder_days == [7, 3, 2, 1]
        assert settings.community_plan_currency == "INR"
