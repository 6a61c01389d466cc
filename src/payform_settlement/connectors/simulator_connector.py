"""Simulator connector for exercising settlement flows without a real provider."""

import json
import uuid
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from ..settlement.errors import DownstreamUnavailable, MalformedNotification, OrderNotFound
from ..settlement.models import (
    Authenticity,
    NotificationChannel,
    PaymentNotification,
    ProviderStatus,
    RedirectParams,
    ReportedStatus,
)
from .base import (
    ConnectorBase,
    CreateOrderRequest,
    CreateOrderResult,
    RawRequest,
    hmac_sha256_hex,
    signature_matches,
    to_decimal,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-simulator-signature"


class SimulatorStatus(str, Enum):
    """Order states the simulated provider reports."""
    CREATED = "CREATED"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


@dataclass
class SimulatedOrder:
    """In-memory representation of a provider-side order."""
    ref: str
    merchant_order_id: str
    amount: Decimal
    currency: str
    payer_email: str
    form_id: str
    status: SimulatorStatus = SimulatorStatus.CREATED
    amount_paid: Decimal = Decimal("0")
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class SimulatorConfig:
    """Configuration for simulator behaviour."""
    webhook_secret: Optional[str] = None
    checkout_base_url: str = "https://simulator.local/checkout"
    fail_creates: bool = False  # create_order raises DownstreamUnavailable
    outage_calls: int = 0  # number of upcoming status queries that fail


class SimulatorConnector(ConnectorBase):
    """
    In-process provider used for local development and tests.

    Orders live in memory; ``complete``/``fail`` move them the way a payer
    would, and ``webhook_body``/``sign`` build deliveries the service accepts.
    """

    provider = "simulator"
    STATUS_OVERRIDES = {
        "created": ReportedStatus.PENDING,
        "active": ReportedStatus.PENDING,
        "expired": ReportedStatus.FAILED,
    }

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self._orders: Dict[str, SimulatedOrder] = {}
        self.status_queries = 0
        logger.info("SimulatorConnector initialized")

    def _generate_ref(self) -> str:
        return f"sim_order_{uuid.uuid4().hex[:20]}"

    async def create_order(self, request: CreateOrderRequest) -> CreateOrderResult:
        if self.config.fail_creates:
            raise DownstreamUnavailable("Simulated provider outage", order_id=request.order_id)
        ref = self._generate_ref()
        self._orders[ref] = SimulatedOrder(
            ref=ref,
            merchant_order_id=request.order_id,
            amount=request.amount,
            currency=request.currency,
            payer_email=request.payer_email,
            form_id=request.form_id,
            status=SimulatorStatus.PENDING,
        )
        return CreateOrderResult(
            provider_order_ref=ref,
            checkout_url=f"{self.config.checkout_base_url}/{ref}",
            session_token=ref,
            raw={"simulator": True, "return_url": request.return_url},
        )

    def _find(self, reference: str) -> Optional[SimulatedOrder]:
        order = self._orders.get(reference)
        if order:
            return order
        for candidate in self._orders.values():
            if candidate.merchant_order_id == reference:
                return candidate
        return None

    async def fetch_status(self, reference: str) -> ProviderStatus:
        self.status_queries += 1
        if self.config.outage_calls > 0:
            self.config.outage_calls -= 1
            raise DownstreamUnavailable("Simulated status API outage")
        order = self._find(reference)
        if order is None:
            raise OrderNotFound(f"Simulator has no order {reference}")
        return ProviderStatus(
            status=self.normalize_status(order.status.value),
            provider_status=order.status.value,
            amount=order.amount_paid or order.amount,
            currency=order.currency,
            paid_at=order.paid_at,
            provider_order_ref=order.ref,
            merchant_order_id=order.merchant_order_id,
            provider_payment_id=order.payment_id,
            payer_email=order.payer_email,
            form_id=order.form_id,
        )

    def authenticate(self, raw: RawRequest) -> Authenticity:
        if signature_matches(self.config.webhook_secret, raw.body, raw.header(SIGNATURE_HEADER)):
            return Authenticity.AUTHENTIC
        return Authenticity.FORGED

    def normalize(self, raw: RawRequest) -> Optional[PaymentNotification]:
        payload = raw.json()
        if payload.get("event") != "payment.updated":
            return None
        status = payload.get("status")
        if not status or not (payload.get("order_ref") or payload.get("merchant_order_id")):
            raise MalformedNotification("Simulator webhook lacks status or order reference")
        return PaymentNotification(
            provider=self.provider,
            channel=NotificationChannel.WEBHOOK,
            event_type=payload["event"],
            source_provider_order_ref=payload.get("order_ref") or payload.get("merchant_order_id"),
            source_secondary_refs=[r for r in payload.get("secondary_refs", []) if isinstance(r, str)],
            reported_status=self.normalize_status(status),
            provider_status=status,
            reported_amount=to_decimal(payload.get("amount")),
            currency=payload.get("currency"),
            provider_payment_id=payload.get("payment_id"),
            payer_email=payload.get("email"),
            form_id=payload.get("form_id"),
        )

    def redirect_params(self, raw: RawRequest) -> RedirectParams:
        ref = raw.query.get("ref") or raw.query.get("order_id")
        if not ref:
            raise MalformedNotification("Redirect is missing the order reference")
        return RedirectParams(
            reference=ref,
            advisory_status=raw.query.get("status"),
        )

    # Simulator-specific helpers

    def complete(self, ref: str, amount: Optional[Decimal] = None) -> SimulatedOrder:
        """Mark an order paid, optionally with a different amount than requested."""
        order = self._orders[ref]
        order.status = SimulatorStatus.PAID
        order.amount_paid = amount if amount is not None else order.amount
        order.payment_id = f"sim_pay_{uuid.uuid4().hex[:16]}"
        order.paid_at = datetime.utcnow()
        return order

    def fail(self, ref: str, status: SimulatorStatus = SimulatorStatus.FAILED) -> SimulatedOrder:
        order = self._orders[ref]
        order.status = status
        return order

    def get_order(self, ref: str) -> Optional[SimulatedOrder]:
        return self._orders.get(ref)

    def webhook_body(self, ref: str, **overrides: Any) -> bytes:
        """Serialize a ``payment.updated`` delivery for the current order state."""
        order = self._orders[ref]
        payload: Dict[str, Any] = {
            "event": "payment.updated",
            "order_ref": order.ref,
            "merchant_order_id": order.merchant_order_id,
            "status": order.status.value,
            "amount": str(order.amount_paid or order.amount),
            "currency": order.currency,
            "payment_id": order.payment_id,
            "email": order.payer_email,
            "form_id": order.form_id,
        }
        payload.update(overrides)
        return json.dumps(payload).encode()

    def sign(self, body: bytes) -> str:
        return hmac_sha256_hex(self.config.webhook_secret or "", body)

    def clear_orders(self) -> None:
        self._orders.clear()

    def health_check(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "provider": self.provider,
            "order_count": len(self._orders),
        }
