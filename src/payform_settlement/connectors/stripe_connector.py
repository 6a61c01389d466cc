import asyncio
import logging
from decimal import Decimal
from typing import Dict, Any, Optional

import stripe

from ..settlement.errors import DownstreamUnavailable, MalformedNotification, OrderNotFound
from ..settlement.models import (
    Authenticity,
    NotificationChannel,
    PaymentNotification,
    ProviderStatus,
    RedirectParams,
    ReportedStatus,
)
from .base import ConnectorBase, CreateOrderRequest, CreateOrderResult, RawRequest, to_decimal

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"

SESSION_EVENTS = {
    "checkout.session.completed": None,  # status taken from payment_status
    "checkout.session.async_payment_succeeded": "paid",
    "checkout.session.async_payment_failed": "failed",
    "checkout.session.expired": "expired",
}

CENTS = Decimal("100")


def _with_query(url: str, fragment: str) -> str:
    return f"{url}{'&' if '?' in url else '?'}{fragment}"


def _as_dict(obj: Any) -> Dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeConnector(ConnectorBase):
    """
    Stripe connector built on Checkout Sessions via stripe-python. The SDK is
    synchronous, so calls run in a worker thread. Redirects only carry the
    session id and are re-checked with ``Session.retrieve``.
    """

    provider = "stripe"
    STATUS_OVERRIDES = {
        "unpaid": ReportedStatus.PENDING,
        "open": ReportedStatus.PENDING,
        "complete": ReportedStatus.PENDING,
        "no_payment_required": ReportedStatus.CAPTURED,
        "expired": ReportedStatus.FAILED,
    }

    def __init__(self, api_key: Optional[str], webhook_secret: Optional[str] = None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def _require_key(self) -> str:
        if not self.api_key:
            raise DownstreamUnavailable("Stripe API key not configured")
        return self.api_key

    async def create_order(self, request: CreateOrderRequest) -> CreateOrderResult:
        api_key = self._require_key()
        cancel_url = request.cancel_url or _with_query(request.return_url, "status=cancelled")
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=api_key,
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": request.currency.lower(),
                        "unit_amount": int((request.amount * CENTS).to_integral_value()),
                        "product_data": {"name": request.product_name},
                    },
                    "quantity": 1,
                }],
                customer_email=request.payer_email,
                client_reference_id=request.order_id,
                metadata={"order_id": request.order_id, "form_id": request.form_id},
                success_url=_with_query(request.return_url, "session_id={CHECKOUT_SESSION_ID}"),
                cancel_url=_with_query(cancel_url, "session_id={CHECKOUT_SESSION_ID}"),
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session creation failed for {request.order_id}: {type(e).__name__}")
            raise DownstreamUnavailable(f"Stripe error: {e}", order_id=request.order_id) from e

        logger.info(f"Stripe checkout session created for {request.order_id}: {session.id}")
        return CreateOrderResult(
            provider_order_ref=session.id,
            checkout_url=session.url,
            raw=_as_dict(session),
        )

    async def fetch_status(self, reference: str) -> ProviderStatus:
        api_key = self._require_key()
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve, reference, api_key=api_key
            )
        except stripe.InvalidRequestError as e:
            if getattr(e, "http_status", None) == 404:
                raise OrderNotFound(f"Stripe has no checkout session {reference}") from e
            raise DownstreamUnavailable(f"Stripe error: {e}") from e
        except stripe.StripeError as e:
            raise DownstreamUnavailable(f"Stripe error: {e}") from e
        return self._session_status(_as_dict(session))

    def _session_provider_status(self, data: Dict[str, Any]) -> Optional[str]:
        if data.get("payment_status") in ("paid", "no_payment_required"):
            return data["payment_status"]
        if data.get("status") == "expired":
            return "expired"
        return data.get("payment_status") or data.get("status")

    def _session_status(self, data: Dict[str, Any]) -> ProviderStatus:
        provider_status = self._session_provider_status(data)
        metadata = data.get("metadata") or {}
        customer = data.get("customer_details") or {}
        return ProviderStatus(
            status=self.normalize_status(provider_status),
            provider_status=provider_status,
            amount=self._amount(data),
            currency=(data.get("currency") or "").upper() or None,
            provider_order_ref=data.get("id"),
            merchant_order_id=data.get("client_reference_id") or metadata.get("order_id"),
            provider_payment_id=data.get("payment_intent") if isinstance(data.get("payment_intent"), str) else None,
            payer_email=customer.get("email") or data.get("customer_email"),
            form_id=metadata.get("form_id"),
            raw={"id": data.get("id"), "status": data.get("status"), "payment_status": data.get("payment_status")},
        )

    @staticmethod
    def _amount(data: Dict[str, Any]) -> Optional[Decimal]:
        amount = to_decimal(data.get("amount_total"))
        return amount / CENTS if amount is not None else None

    def authenticate(self, raw: RawRequest) -> Authenticity:
        header = raw.header(SIGNATURE_HEADER)
        if not self.webhook_secret or not header:
            return Authenticity.FORGED
        try:
            stripe.WebhookSignature.verify_header(
                raw.body.decode("utf-8"), header, self.webhook_secret, tolerance=300
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError):
            return Authenticity.FORGED
        return Authenticity.AUTHENTIC

    def normalize(self, raw: RawRequest) -> Optional[PaymentNotification]:
        event = raw.json()
        event_type = event.get("type")
        if event_type not in SESSION_EVENTS:
            logger.info(f"Ignoring Stripe event {event_type}")
            return None

        session = (event.get("data") or {}).get("object") or {}
        if not session.get("id"):
            raise MalformedNotification("Stripe event carries no checkout session")
        provider_status = SESSION_EVENTS[event_type] or self._session_provider_status(session)
        metadata = session.get("metadata") or {}
        customer = session.get("customer_details") or {}
        secondary = [session["client_reference_id"]] if session.get("client_reference_id") else []
        payment_intent = session.get("payment_intent")

        return PaymentNotification(
            provider=self.provider,
            channel=NotificationChannel.WEBHOOK,
            event_type=event_type,
            source_provider_order_ref=session["id"],
            source_secondary_refs=secondary,
            reported_status=self.normalize_status(provider_status),
            provider_status=provider_status,
            reported_amount=self._amount(session),
            currency=(session.get("currency") or "").upper() or None,
            provider_payment_id=payment_intent if isinstance(payment_intent, str) else None,
            payer_email=customer.get("email") or session.get("customer_email"),
            form_id=metadata.get("form_id"),
        )

    def redirect_params(self, raw: RawRequest) -> RedirectParams:
        session_id = raw.query.get("session_id")
        if not session_id:
            raise MalformedNotification("Stripe redirect is missing session_id")
        return RedirectParams(
            reference=session_id,
            advisory_status=raw.query.get("status"),
        )
