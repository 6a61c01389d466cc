"""Cashfree Payment Gateway connector (PG orders API)."""

import logging
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
from ..settlement.splitter import to_minor_units
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

SIGNATURE_HEADER = "x-webhook-signature"

PAYMENT_EVENTS = frozenset({
    "PAYMENT_SUCCESS_WEBHOOK",
    "PAYMENT_FAILED_WEBHOOK",
    "PAYMENT_USER_DROPPED_WEBHOOK",
})


class CashfreeConnector(ConnectorBase):
    """
    Cashfree connector. Orders are created under our own order id, so
    webhooks and the status API echo that id back alongside ``cf_order_id``.
    Redirects are unsigned and only tell us which order to re-check.
    """

    provider = "cashfree"
    STATUS_OVERRIDES = {
        # Payment statuses
        "success": ReportedStatus.CAPTURED,
        "user_dropped": ReportedStatus.FAILED,
        "void": ReportedStatus.FAILED,
        "not_attempted": ReportedStatus.PENDING,
        # Order and link statuses; an ACTIVE order is still awaiting payment
        "active": ReportedStatus.PENDING,
        "partially_paid": ReportedStatus.PENDING,
        "expired": ReportedStatus.FAILED,
        "terminated": ReportedStatus.FAILED,
    }

    def __init__(
        self,
        app_id: Optional[str],
        secret_key: Optional[str],
        webhook_secret: Optional[str] = None,
        base_url: str = "https://sandbox.cashfree.com",
        api_version: str = "2023-08-01",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id = app_id
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.app_id or not self.secret_key:
            raise DownstreamUnavailable("Cashfree credentials not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=20.0,
            transport=self._transport,
            headers={
                "x-client-id": self.app_id,
                "x-client-secret": self.secret_key,
                "x-api-version": self.api_version,
            },
        )

    async def create_order(self, request: CreateOrderRequest) -> CreateOrderResult:
        payload = {
            "order_id": request.order_id,
            "order_amount": str(to_minor_units(request.amount)),
            "order_currency": request.currency,
            "customer_details": {
                "customer_id": request.payer_email.replace("@", "_").replace(".", "_"),
                "customer_name": request.payer_name or "Customer",
                "customer_email": request.payer_email,
                "customer_phone": request.payer_phone or "9999999999",
            },
            "order_meta": {
                "return_url": request.return_url,
                "notify_url": request.notify_url,
            },
            "order_note": f"Payment for {request.product_name} via PayForm",
            "order_tags": {"form_id": request.form_id},
        }
        async with self._client() as client:
            response = await client.post("/pg/orders", json=payload)
        data = check_response(response, f"Cashfree create order {request.order_id}")

        session_id = data.get("payment_session_id")
        logger.info(f"Cashfree order created for {request.order_id}: {data.get('cf_order_id')}")
        return CreateOrderResult(
            provider_order_ref=str(data["cf_order_id"]),
            checkout_url=f"{self.base_url}/pg/view/order/{session_id}" if session_id else None,
            session_token=session_id,
            raw=data,
        )

    def status_reference(self, order) -> str:
        return order.order_id

    async def fetch_status(self, reference: str) -> ProviderStatus:
        async with self._client() as client:
            response = await client.get(f"/pg/orders/{reference}")
            if response.status_code == 404:
                # References from payment-link flows are link ids, not order ids
                logger.info(f"Cashfree order {reference} not found, trying payment links")
                response = await client.get(f"/pg/links/{reference}")
                data = check_response(response, f"Cashfree link {reference}")
                return self._link_status(data)
        data = check_response(response, f"Cashfree order {reference}")
        return self._order_status(data)

    def _order_status(self, data: Dict[str, Any]) -> ProviderStatus:
        provider_status = data.get("order_status")
        customer = data.get("customer_details") or {}
        return ProviderStatus(
            status=self.normalize_status(provider_status),
            provider_status=provider_status,
            amount=to_decimal(data.get("order_amount")),
            currency=data.get("order_currency"),
            provider_order_ref=str(data["cf_order_id"]) if data.get("cf_order_id") else None,
            merchant_order_id=data.get("order_id"),
            payer_email=customer.get("customer_email"),
            form_id=(data.get("order_tags") or {}).get("form_id"),
            raw=data,
        )

    def _link_status(self, data: Dict[str, Any]) -> ProviderStatus:
        amount = to_decimal(data.get("link_amount"))
        paid = to_decimal(data.get("link_amount_paid")) or 0
        provider_status = data.get("link_status")
        if amount is not None and paid >= amount:
            provider_status = "PAID"
        customer = data.get("customer_details") or {}
        return ProviderStatus(
            status=self.normalize_status(provider_status),
            provider_status=provider_status,
            amount=paid if provider_status == "PAID" else amount,
            currency=data.get("link_currency"),
            provider_order_ref=data.get("link_id"),
            merchant_order_id=data.get("link_id"),
            payer_email=customer.get("customer_email"),
            form_id=(data.get("link_notes") or {}).get("form_id"),
            raw=data,
        )

    def authenticate(self, raw: RawRequest) -> Authenticity:
        if signature_matches(self.webhook_secret, raw.body, raw.header(SIGNATURE_HEADER)):
            return Authenticity.AUTHENTIC
        return Authenticity.FORGED

    def normalize(self, raw: RawRequest) -> Optional[PaymentNotification]:
        payload = raw.json()
        event_type = payload.get("type")
        if event_type not in PAYMENT_EVENTS:
            logger.info(f"Ignoring Cashfree event {event_type}")
            return None

        data = payload.get("data") or {}
        order = data.get("order") or {}
        payment = data.get("payment") or data
        customer = data.get("customer_details") or {}

        order_id = order.get("order_id") or payment.get("order_id")
        provider_status = payment.get("payment_status")
        if not order_id or not provider_status:
            raise MalformedNotification("Cashfree webhook lacks order_id or payment_status")

        secondary = [str(order["cf_order_id"])] if order.get("cf_order_id") else []
        return PaymentNotification(
            provider=self.provider,
            channel=NotificationChannel.WEBHOOK,
            event_type=event_type,
            source_provider_order_ref=order_id,
            source_secondary_refs=secondary,
            reported_status=self.normalize_status(provider_status),
            provider_status=provider_status,
            reported_amount=to_decimal(payment.get("payment_amount", order.get("order_amount"))),
            currency=payment.get("payment_currency") or order.get("order_currency"),
            provider_payment_id=str(payment["cf_payment_id"]) if payment.get("cf_payment_id") else None,
            payer_email=customer.get("customer_email"),
            form_id=(order.get("order_tags") or {}).get("form_id"),
        )

    def redirect_params(self, raw: RawRequest) -> RedirectParams:
        order_id = raw.query.get("order_id")
        if not order_id:
            raise MalformedNotification("Cashfree redirect is missing order_id")
        return RedirectParams(
            reference=order_id,
            advisory_status=raw.query.get("status"),
        )
