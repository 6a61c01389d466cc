import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

import httpx
from pydantic import BaseModel, Field

from ..settlement.errors import DownstreamUnavailable, MalformedNotification, OrderNotFound
from ..settlement.models import (
    Authenticity,
    NotificationChannel,
    PaymentNotification,
    ProviderStatus,
    RedirectParams,
    ReportedStatus,
    normalize_status,
)


@dataclass
class RawRequest:
    """Provider request as received: raw body bytes, lowercased headers, query string."""
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    query: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def json(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self.body or b"")
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedNotification("Request body is not valid JSON") from e
        if not isinstance(payload, dict):
            raise MalformedNotification("Request body must be a JSON object")
        return payload


# Canonical models
class CreateOrderRequest(BaseModel):
    order_id: str
    amount: Decimal  # major units
    currency: str = "INR"
    form_id: str
    payer_email: str
    payer_name: Optional[str] = None
    payer_phone: Optional[str] = None
    product_name: str
    return_url: str
    cancel_url: Optional[str] = None
    notify_url: Optional[str] = None


class CreateOrderResult(BaseModel):
    provider_order_ref: str
    checkout_url: Optional[str] = None
    session_token: Optional[str] = Field(None, description="Token the provider's browser checkout needs")
    raw: Optional[Dict[str, Any]] = None


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signature_matches(secret: Optional[str], message: bytes, signature: Optional[str]) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature. No secret never matches."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(hmac_sha256_hex(secret, message), signature.strip().lower())


def check_response(response: httpx.Response, description: str) -> Dict[str, Any]:
    """Return the JSON body of a provider response or raise a settlement error.

    404 means the provider does not know the reference; every other error
    status is treated as the provider being unavailable.
    """
    if response.status_code == 404:
        raise OrderNotFound(f"{description}: not found at provider")
    if response.status_code >= 400:
        raise DownstreamUnavailable(f"{description}: provider returned {response.status_code}")
    try:
        return response.json()
    except ValueError as e:
        raise DownstreamUnavailable(f"{description}: provider returned invalid JSON") from e


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError as e:
        raise MalformedNotification(f"Invalid amount {value!r}") from e


class ConnectorBase(ABC):
    """
    Gateway adapter interface. Translates provider payloads into
    PaymentNotification values and answers authoritative status queries.
    Nothing here touches the ledger.
    """

    provider: str = ""
    # Provider vocabulary layered over the shared status table
    STATUS_OVERRIDES: Dict[str, ReportedStatus] = {}

    def normalize_status(self, provider_status: Optional[str]) -> ReportedStatus:
        return normalize_status(provider_status, self.STATUS_OVERRIDES)

    @abstractmethod
    async def create_order(self, request: CreateOrderRequest) -> CreateOrderResult:
        """
        Create the provider-side order or checkout session for a local order.
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch_status(self, reference: str) -> ProviderStatus:
        """
        Query the provider's status API. This is the only source trusted for
        settling an order from a redirect or a sweep.
        """
        raise NotImplementedError

    @abstractmethod
    def authenticate(self, raw: RawRequest) -> Authenticity:
        """
        Verify a webhook delivery against the shared secret.
        """
        raise NotImplementedError

    @abstractmethod
    def normalize(self, raw: RawRequest) -> Optional[PaymentNotification]:
        """
        Parse an authenticated webhook; return None for event types that do
        not describe a payment outcome.
        """
        raise NotImplementedError

    @abstractmethod
    def redirect_params(self, raw: RawRequest) -> RedirectParams:
        raise NotImplementedError

    def authenticate_redirect(self, raw: RawRequest) -> Authenticity:
        # Unsigned redirects carry nothing to verify; they are advisory and
        # the status is always re-fetched before settling.
        return Authenticity.AUTHENTIC

    def status_reference(self, order) -> str:
        """Identifier the status API knows a local order by."""
        return order.provider_order_ref or order.order_id

    def notification_from_status(
        self,
        status: ProviderStatus,
        channel: NotificationChannel,
        reference: Optional[str] = None,
    ) -> PaymentNotification:
        """Build a notification from a status query answer.

        Payer email and form come from the provider's own record only, so a
        status query can fall back to the payer heuristic but a redirect's
        query string cannot steer it.
        """
        primary = status.provider_order_ref or status.merchant_order_id or reference
        secondary = [r for r in (reference, status.merchant_order_id) if r and r != primary]
        return PaymentNotification(
            provider=self.provider,
            channel=channel,
            event_type="status_query",
            source_provider_order_ref=primary,
            source_secondary_refs=secondary,
            reported_status=status.status,
            provider_status=status.provider_status,
            reported_amount=status.amount,
            currency=status.currency,
            occurred_at=status.paid_at or datetime.utcnow(),
            provider_payment_id=status.provider_payment_id,
            payer_email=status.payer_email,
            form_id=status.form_id,
        )

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "provider": self.provider}
