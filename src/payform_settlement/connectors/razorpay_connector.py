"""Razorpay connector (Orders API with Standard Checkout)."""

import logging
from decimal import Decimal
from typing import Dict, Any, Optional

import httpx

from ..settlement.errors import DownstreamUnavailable, MalformedNotification
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
    check_response,
    signature_matches,
    to_decimal,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-razorpay-signature"

PAYMENT_EVENTS = frozenset({"payment.captured", "payment.failed", "order.paid"})

PAISE = Decimal("100")


def from_paise(value: Any) -> Optional[Decimal]:
    amount = to_decimal(value)
    return amount / PAISE if amount is not None else None


class RazorpayConnector(ConnectorBase):
    """
    Razorpay connector. Amounts travel in paise. Checkout redirects are
    signed with the key secret over ``order_id|payment_id``; webhooks are
    signed with the separate webhook secret.
    """

    provider = "razorpay"
    STATUS_OVERRIDES = {
        # An authorized payment is not settled until captured
        "authorized": ReportedStatus.PENDING,
        "attempted": ReportedStatus.PENDING,
        "created": ReportedStatus.PENDING,
        "refunded": ReportedStatus.FAILED,
    }

    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        webhook_secret: Optional[str] = None,
        base_url: str = "https://api.razorpay.com",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.key_id or not self.key_secret:
            raise DownstreamUnavailable("Razorpay credentials not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=20.0,
            transport=self._transport,
            auth=(self.key_id, self.key_secret),
        )

    async def create_order(self, request: CreateOrderRequest) -> CreateOrderResult:
        payload = {
            "amount": int((request.amount * PAISE).to_integral_value()),
            "currency": request.currency,
            "receipt": request.order_id,
            "notes": {
                "order_id": request.order_id,
                "form_id": request.form_id,
                "email": request.payer_email,
                "product_name": request.product_name,
            },
        }
        async with self._client() as client:
            response = await client.post("/v1/orders", json=payload)
        data = check_response(response, f"Razorpay create order {request.order_id}")

        logger.info(f"Razorpay order created for {request.order_id}: {data.get('id')}")
        return CreateOrderResult(
            provider_order_ref=data["id"],
            session_token=data["id"],
            raw=data,
        )

    async def fetch_status(self, reference: str) -> ProviderStatus:
        async with self._client() as client:
            if reference.startswith("pay_"):
                response = await client.get(f"/v1/payments/{reference}")
                data = check_response(response, f"Razorpay payment {reference}")
                return self._payment_status(data)
            response = await client.get(f"/v1/orders/{reference}")
        data = check_response(response, f"Razorpay order {reference}")
        return self._order_status(data)

    def _payment_status(self, data: Dict[str, Any]) -> ProviderStatus:
        notes = data.get("notes") or {}
        provider_status = data.get("status")
        return ProviderStatus(
            status=self.normalize_status(provider_status),
            provider_status=provider_status,
            amount=from_paise(data.get("amount")),
            currency=data.get("currency"),
            provider_order_ref=data.get("order_id"),
            merchant_order_id=notes.get("order_id") if isinstance(notes, dict) else None,
            provider_payment_id=data.get("id"),
            payer_email=data.get("email"),
            form_id=notes.get("form_id") if isinstance(notes, dict) else None,
            raw=data,
        )

    def _order_status(self, data: Dict[str, Any]) -> ProviderStatus:
        provider_status = data.get("status")
        notes = data.get("notes") or {}
        if not isinstance(notes, dict):
            notes = {}
        paid = provider_status == "paid"
        return ProviderStatus(
            status=self.normalize_status(provider_status),
            provider_status=provider_status,
            amount=from_paise(data.get("amount_paid") if paid else data.get("amount")),
            currency=data.get("currency"),
            provider_order_ref=data.get("id"),
            merchant_order_id=data.get("receipt"),
            payer_email=notes.get("email"),
            form_id=notes.get("form_id"),
            raw=data,
        )

    def authenticate(self, raw: RawRequest) -> Authenticity:
        if signature_matches(self.webhook_secret, raw.body, raw.header(SIGNATURE_HEADER)):
            return Authenticity.AUTHENTIC
        return Authenticity.FORGED

    def normalize(self, raw: RawRequest) -> Optional[PaymentNotification]:
        payload = raw.json()
        event_type = payload.get("event")
        if event_type not in PAYMENT_EVENTS:
            logger.info(f"Ignoring Razorpay event {event_type}")
            return None

        body = payload.get("payload") or {}
        payment = (body.get("payment") or {}).get("entity") or {}
        order = (body.get("order") or {}).get("entity") or {}
        link = (body.get("payment_link") or {}).get("entity") or {}
        notes = payment.get("notes") or order.get("notes") or {}
        if not isinstance(notes, dict):
            notes = {}

        order_ref = payment.get("order_id") or order.get("id")
        if event_type == "order.paid":
            provider_status = order.get("status") or "paid"
        else:
            provider_status = payment.get("status")
        if not order_ref or not provider_status:
            raise MalformedNotification("Razorpay webhook lacks order id or status")

        return PaymentNotification(
            provider=self.provider,
            channel=NotificationChannel.WEBHOOK,
            event_type=event_type,
            source_provider_order_ref=order_ref,
            source_secondary_refs=[link["id"]] if link.get("id") else [],
            reported_status=self.normalize_status(provider_status),
            provider_status=provider_status,
            reported_amount=from_paise(payment.get("amount", order.get("amount_paid"))),
            currency=payment.get("currency") or order.get("currency"),
            provider_payment_id=payment.get("id"),
            payer_email=payment.get("email") or notes.get("email"),
            form_id=notes.get("form_id"),
        )

    def authenticate_redirect(self, raw: RawRequest) -> Authenticity:
        order_id = raw.query.get("razorpay_order_id")
        payment_id = raw.query.get("razorpay_payment_id")
        signature = raw.query.get("razorpay_signature")
        if not order_id or not payment_id:
            return Authenticity.FORGED
        message = f"{order_id}|{payment_id}".encode()
        if signature_matches(self.key_secret, message, signature):
            return Authenticity.AUTHENTIC
        return Authenticity.FORGED

    def redirect_params(self, raw: RawRequest) -> RedirectParams:
        payment_id = raw.query.get("razorpay_payment_id")
        if not payment_id:
            raise MalformedNotification("Razorpay redirect is missing razorpay_payment_id")
        return RedirectParams(
            reference=payment_id,
        )
