"""Payment provider connectors."""

from functools import lru_cache
from typing import Dict, Optional

from ..settings import Settings, get_settings
from .base import (
    ConnectorBase,
    CreateOrderRequest,
    CreateOrderResult,
    RawRequest,
    hmac_sha256_hex,
    signature_matches,
)
from .cashfree_connector import CashfreeConnector
from .razorpay_connector import RazorpayConnector
from .stripe_connector import StripeConnector
from .simulator_connector import (
    SimulatorConnector,
    SimulatorConfig,
    SimulatorStatus,
    SimulatedOrder,
)


def build_connectors(settings: Optional[Settings] = None) -> Dict[str, ConnectorBase]:
    """Instantiate one connector per supported provider.

    The in-memory simulator keeps its orders in this process only, so it is
    registered just for local runs that set ``SIMULATOR_WEBHOOK_SECRET``.
    """
    settings = settings or get_settings()
    connectors = [
        CashfreeConnector(
            app_id=settings.cashfree_app_id,
            secret_key=settings.cashfree_secret_key,
            webhook_secret=settings.cashfree_webhook_secret,
            base_url=settings.cashfree_base_url,
            api_version=settings.cashfree_api_version,
        ),
        RazorpayConnector(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            webhook_secret=settings.razorpay_webhook_secret,
            base_url=settings.razorpay_base_url,
        ),
        StripeConnector(
            api_key=settings.stripe_api_key,
            webhook_secret=settings.stripe_webhook_secret,
        ),
    ]
    if settings.simulator_webhook_secret:
        connectors.append(SimulatorConnector(SimulatorConfig(webhook_secret=settings.simulator_webhook_secret)))
    return {c.provider: c for c in connectors}


@lru_cache(maxsize=1)
def get_connectors() -> Dict[str, ConnectorBase]:
    """FastAPI dependency returning the process-wide connector registry."""
    return build_connectors()


__all__ = [
    # Base classes and models
    "ConnectorBase",
    "CreateOrderRequest",
    "CreateOrderResult",
    "RawRequest",
    "hmac_sha256_hex",
    "signature_matches",
    # Connectors
    "CashfreeConnector",
    "RazorpayConnector",
    "StripeConnector",
    "SimulatorConnector",
    "SimulatorConfig",
    "SimulatorStatus",
    "SimulatedOrder",
    # Registry
    "build_connectors",
    "get_connectors",
]
