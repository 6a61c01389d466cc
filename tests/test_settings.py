"""Tests for environment-driven configuration."""

import os
from decimal import Decimal
from unittest.mock import patch

import pytest

from payform_settlement.connectors import build_connectors
from payform_settlement.settings import DEFAULT_FEE_MODELS, Settings, normalize_database_url


class TestSettings:
    def test_from_env(self):
        env = {
            "DATABASE_URL": "postgres://user:pw@db/payform",
            "PUBLIC_BASE_URL": "https://forms.example.com/",
            "PLATFORM_COMMISSION_RATE": "2.5",
            "RETRY_ATTEMPTS": "5",
            "CASHFREE_WEBHOOK_SECRET": "cf_whsec",
            "SENDGRID_API_KEY": "  ",
        }
        with patch.dict(os.environ, env):
            settings = Settings.from_env()

        assert settings.database_url == "postgresql+asyncpg://user:pw@db/payform"
        assert settings.public_base_url == "https://forms.example.com"
        assert settings.platform_commission_rate == Decimal("2.5")
        assert settings.retry_attempts == 5
        assert settings.cashfree_webhook_secret == "cf_whsec"
        assert settings.sendgrid_api_key is None

    @pytest.mark.parametrize("url,expected", [
        ("postgresql://h/db", "postgresql+asyncpg://h/db"),
        ("postgres://h/db", "postgresql+asyncpg://h/db"),
        ("sqlite+aiosqlite:///./payform.db", "sqlite+aiosqlite:///./payform.db"),
    ])
    def test_normalize_database_url(self, url, expected):
        assert normalize_database_url(url) == expected


class TestBuildConnectors:
    """The provider registry built from settings."""

    def test_simulator_is_not_registered_by_default(self):
        connectors = build_connectors(Settings())

        assert set(connectors) == {"cashfree", "razorpay", "stripe"}

    def test_simulator_needs_its_webhook_secret(self):
        connectors = build_connectors(Settings(simulator_webhook_secret="sim_secret"))

        assert set(connectors) == {"cashfree", "razorpay", "stripe", "simulator"}
        assert connectors["simulator"].config.webhook_secret == "sim_secret"

    def test_every_connector_has_a_fee_model(self):
        connectors = build_connectors(Settings(simulator_webhook_secret="sim_secret"))

        assert set(connectors) <= set(DEFAULT_FEE_MODELS)
