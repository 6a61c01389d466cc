"""Order creation service: local order, quoted split and provider checkout."""

import logging
import secrets
import string
import time
from decimal import Decimal
from typing import Optional, Dict, Mapping
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .connectors.base import ConnectorBase, CreateOrderRequest
from .database import (
    OrderRepository,
    SettlementEventRepository,
    OrderStatus,
    SettlementAction,
)
from .settings import Settings
from .settlement.errors import DownstreamUnavailable, InvalidAmount, SettlementError
from .settlement.ledger import SettlementLedger
from .settlement.splitter import FeeModel, MINOR_UNIT, PLATFORM_COMMISSION_RATE, compute

logger = logging.getLogger(__name__)

API_CHANNEL = "api"
_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_order_id() -> str:
    """Return ``payform_<epoch millis>_<9 base36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"payform_{int(time.time() * 1000)}_{suffix}"


class OrderRequest(BaseModel):
    """A payer's request to pay for a form's product."""
    form_id: str = Field(..., min_length=1)
    payer_email: str = Field(..., min_length=3, max_length=255)
    product_name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., gt=0, lt=10 ** 10, description="Gross amount in major units")
    payee_id: str = Field(..., min_length=1)
    provider: str = "cashfree"
    currency: str = Field("INR", min_length=3, max_length=3)
    payer_name: Optional[str] = None
    payer_phone: Optional[str] = None

    @field_validator("payer_email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip()
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("payer_email is not a valid email address")
        return value

    @field_validator("price")
    @classmethod
    def _check_price(cls, value: Decimal) -> Decimal:
        # Stored as Numeric(12, 2); the quote must be computed from the stored value
        quantized = value.quantize(MINOR_UNIT)
        if quantized != value:
            raise ValueError("price must have at most two decimal places")
        return quantized

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class OrderCreated(BaseModel):
    order_id: str
    provider: str
    provider_order_ref: str
    status: str
    gross_amount: str
    currency: str
    checkout_url: Optional[str] = None
    session_token: Optional[str] = None
    split: Dict[str, str]


class OrderService:
    """Creates orders and their provider-side checkout."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        connectors: Mapping[str, ConnectorBase],
        fee_models: Mapping[str, FeeModel],
        public_base_url: str,
        platform_rate: Decimal = PLATFORM_COMMISSION_RATE,
    ):
        """Initialize the service.

        Args:
            session_factory: Factory for short-lived database sessions.
            connectors: Gateway adapters keyed by provider name.
            fee_models: Gateway fee model per provider.
            public_base_url: Base URL the provider redirects and posts back to.
            platform_rate: Platform commission in percent.
        """
        self.session_factory = session_factory
        self.connectors = connectors
        self.fee_models = fee_models
        self.public_base_url = public_base_url.rstrip("/")
        self.platform_rate = platform_rate
        self.ledger = SettlementLedger(session_factory)

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        connectors: Mapping[str, ConnectorBase],
        settings: Settings,
    ) -> "OrderService":
        return cls(
            session_factory,
            connectors,
            fee_models=settings.fee_models,
            public_base_url=settings.public_base_url,
            platform_rate=settings.platform_commission_rate,
        )

    async def create_order(self, request: OrderRequest) -> OrderCreated:
        """Create a local order and its provider checkout.

        The split shown to the payer is computed here with the same inputs
        settlement uses later, so both agree exactly.

        Raises:
            ValueError: Unknown provider.
            InvalidAmount: The price does not leave a positive net for the payee.
            DownstreamUnavailable: The provider did not create the order; the
                local order is marked failed.
        """
        connector = self.connectors.get(request.provider)
        fee_model = self.fee_models.get(request.provider)
        if connector is None or fee_model is None:
            raise ValueError(f"Provider '{request.provider}' is not supported")

        split = compute(request.price, fee_model, self.platform_rate)
        if split.net_to_payee <= 0:
            raise InvalidAmount(
                f"Price {request.price} does not cover gateway fee {split.gateway_fee} "
                f"and commission {split.platform_commission}"
            )

        order_id = generate_order_id()
        async with self.session_factory() as session, session.begin():
            await OrderRepository(session).create(
                order_id=order_id,
                provider=request.provider,
                form_id=request.form_id,
                payer_email=request.payer_email,
                payer_name=request.payer_name,
                payer_phone=request.payer_phone,
                product_name=request.product_name,
                gross_amount=request.price,
                currency=request.currency,
                payee_id=request.payee_id,
                split={
                    "gateway_fee": split.gateway_fee,
                    "platform_commission": split.platform_commission,
                    "net_to_payee": split.net_to_payee,
                },
            )
            await SettlementEventRepository(session).create(
                order_id=order_id,
                action=SettlementAction.CREATED.value,
                new_status=OrderStatus.CREATED.value,
                channel=API_CHANNEL,
                detail={"split": split.to_dict()},
            )

        query = urlencode({"order_id": order_id})
        return_url = f"{self.public_base_url}/verify/{request.provider}?{query}"
        provider_request = CreateOrderRequest(
            order_id=order_id,
            amount=request.price,
            currency=request.currency,
            form_id=request.form_id,
            payer_email=request.payer_email,
            payer_name=request.payer_name,
            payer_phone=request.payer_phone,
            product_name=request.product_name,
            return_url=return_url,
            notify_url=f"{self.public_base_url}/webhook/{request.provider}",
        )

        try:
            created = await connector.create_order(provider_request)
        except (SettlementError, httpx.HTTPError) as e:
            logger.error(f"{request.provider} did not create order {order_id}: {e}")
            await self.ledger.apply_if_absent(
                order_id,
                OrderStatus.FAILED.value,
                channel=API_CHANNEL,
                failure_reason=f"Provider order creation failed: {e}",
            )
            raise DownstreamUnavailable(
                f"{request.provider} could not create the order", order_id=order_id
            ) from e

        async with self.session_factory() as session, session.begin():
            orders = OrderRepository(session)
            if await orders.assign_provider_ref(order_id, created.provider_order_ref):
                status = OrderStatus.PENDING.value
                await SettlementEventRepository(session).create(
                    order_id=order_id,
                    action=SettlementAction.PROVIDER_ORDER_CREATED.value,
                    previous_status=OrderStatus.CREATED.value,
                    new_status=status,
                    channel=API_CHANNEL,
                    detail={"provider_order_ref": created.provider_order_ref},
                )
                logger.info(f"Order {order_id} pending at {request.provider} as {created.provider_order_ref}")
            else:
                # A webhook settled the order before the provider call returned
                status = (await orders.get_by_id(order_id)).status
                logger.info(f"Order {order_id} already {status} when {request.provider} confirmed creation")

        return OrderCreated(
            order_id=order_id,
            provider=request.provider,
            provider_order_ref=created.provider_order_ref,
            status=status,
            gross_amount=str(request.price),
            currency=request.currency,
            checkout_url=created.checkout_url,
            session_token=created.session_token,
            split=split.to_dict(),
        )
