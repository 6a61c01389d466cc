"""Environment-driven configuration."""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Dict, Optional

from .settlement.splitter import FeeModel, PLATFORM_COMMISSION_RATE

DEFAULT_PUBLIC_BASE_URL = "https://payform2025.netlify.app"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./payform.db"

DEFAULT_FEE_MODELS: Dict[str, FeeModel] = {
    "cashfree": FeeModel(rate=Decimal("2.5"), fixed=Decimal("3.00")),
    "razorpay": FeeModel(rate=Decimal("2.0"), fixed=Decimal("2.00"), gst_rate=Decimal("18")),
    "stripe": FeeModel(rate=Decimal("2.9"), fixed=Decimal("3.00")),
    "simulator": FeeModel(rate=Decimal("2.5"), fixed=Decimal("3.00")),
}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def normalize_database_url(db_url: str) -> str:
    """Rewrite plain Postgres URLs to the asyncpg driver."""
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return db_url


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the settlement service."""
    database_url: str = DEFAULT_DATABASE_URL
    api_key: Optional[str] = None
    public_base_url: str = DEFAULT_PUBLIC_BASE_URL

    cashfree_app_id: Optional[str] = None
    cashfree_secret_key: Optional[str] = None
    cashfree_webhook_secret: Optional[str] = None
    cashfree_base_url: str = "https://sandbox.cashfree.com"
    cashfree_api_version: str = "2023-08-01"

    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    razorpay_base_url: str = "https://api.razorpay.com"

    stripe_api_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    simulator_webhook_secret: Optional[str] = None

    platform_commission_rate: Decimal = PLATFORM_COMMISSION_RATE
    fee_models: Dict[str, FeeModel] = field(default_factory=lambda: dict(DEFAULT_FEE_MODELS))

    sendgrid_api_key: Optional[str] = None
    mail_from: str = "noreply@payform.com"

    retry_attempts: int = 3
    retry_base_delay: float = 0.5
    order_rate_limit: str = "60/minute"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls(
            database_url=normalize_database_url(_env("DATABASE_URL", DEFAULT_DATABASE_URL)),
            api_key=_env("API_KEY"),
            public_base_url=_env("PUBLIC_BASE_URL", _env("URL", DEFAULT_PUBLIC_BASE_URL)).rstrip("/"),
            cashfree_app_id=_env("CASHFREE_APP_ID"),
            cashfree_secret_key=_env("CASHFREE_SECRET_KEY"),
            cashfree_webhook_secret=_env("CASHFREE_WEBHOOK_SECRET"),
            cashfree_base_url=_env("CASHFREE_BASE_URL", "https://sandbox.cashfree.com").rstrip("/"),
            cashfree_api_version=_env("CASHFREE_API_VERSION", "2023-08-01"),
            razorpay_key_id=_env("RAZORPAY_KEY_ID"),
            razorpay_key_secret=_env("RAZORPAY_KEY_SECRET"),
            razorpay_webhook_secret=_env("RAZORPAY_WEBHOOK_SECRET"),
            razorpay_base_url=_env("RAZORPAY_BASE_URL", "https://api.razorpay.com").rstrip("/"),
            stripe_api_key=_env("STRIPE_API_KEY"),
            stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET"),
            simulator_webhook_secret=_env("SIMULATOR_WEBHOOK_SECRET"),
            platform_commission_rate=Decimal(_env("PLATFORM_COMMISSION_RATE", str(PLATFORM_COMMISSION_RATE))),
            sendgrid_api_key=_env("SENDGRID_API_KEY"),
            mail_from=_env("MAIL_FROM", "noreply@payform.com"),
            retry_attempts=int(_env("RETRY_ATTEMPTS", "3")),
            retry_base_delay=float(_env("RETRY_BASE_DELAY", "0.5")),
            order_rate_limit=_env("ORDER_RATE_LIMIT", "60/minute"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings (immutable, built once)."""
    return Settings.from_env()
