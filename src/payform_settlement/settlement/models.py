"""Value types for settlement reconciliation."""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, field_validator


class ReportedStatus(str, enum.Enum):
    """Provider outcome after vocabulary normalisation."""
    CAPTURED = "captured"
    FAILED = "failed"
    PENDING = "pending"


class NotificationChannel(str, enum.Enum):
    """Entry point a notification arrived through."""
    WEBHOOK = "webhook"
    REDIRECT = "redirect"
    SWEEP = "sweep"


class ReconciliationOutcome(str, enum.Enum):
    """Result of a single reconcile call."""
    APPLIED = "applied"
    ALREADY_TERMINAL = "already_terminal"
    PENDING = "pending"


class Authenticity(str, enum.Enum):
    AUTHENTIC = "authentic"
    FORGED = "forged"


# Shared provider vocabulary; connectors extend it with their own tables
BASE_STATUS_VOCABULARY: Dict[str, ReportedStatus] = {
    "paid": ReportedStatus.CAPTURED,
    "active": ReportedStatus.CAPTURED,
    "captured": ReportedStatus.CAPTURED,
    "failed": ReportedStatus.FAILED,
    "cancelled": ReportedStatus.FAILED,
}

# Failure statuses that settle an order as cancelled rather than failed
CANCELLATION_STATUSES = frozenset({"cancelled", "canceled", "user_dropped", "expired", "terminated"})


def normalize_status(
    provider_status: Optional[str],
    overrides: Optional[Dict[str, ReportedStatus]] = None,
) -> ReportedStatus:
    """Map a provider status string to a ReportedStatus.

    Lookup is case-insensitive; ``overrides`` take precedence over the
    shared vocabulary and anything unknown is pending.
    """
    if not provider_status:
        return ReportedStatus.PENDING
    key = provider_status.strip().lower()
    if overrides and key in overrides:
        return overrides[key]
    return BASE_STATUS_VOCABULARY.get(key, ReportedStatus.PENDING)


class PaymentNotification(BaseModel):
    """Provider-neutral description of a payment outcome.

    Built per request from a webhook body, a redirect query string or an
    authoritative status query; never persisted directly.
    """
    provider: str
    channel: NotificationChannel = NotificationChannel.WEBHOOK
    event_type: Optional[str] = None
    source_provider_order_ref: Optional[str] = None
    source_secondary_refs: List[str] = Field(default_factory=list)
    reported_status: ReportedStatus
    provider_status: Optional[str] = None
    reported_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
    provider_payment_id: Optional[str] = None
    payer_email: Optional[str] = None
    form_id: Optional[str] = None

    @field_validator("source_secondary_refs")
    @classmethod
    def _dedupe_refs(cls, refs: List[str]) -> List[str]:
        seen = []
        for ref in refs:
            if ref and ref not in seen:
                seen.append(ref)
        return seen

    @property
    def is_cancellation(self) -> bool:
        return (self.provider_status or "").strip().lower() in CANCELLATION_STATUSES


class ProviderStatus(BaseModel):
    """Authoritative answer of a provider status query."""
    status: ReportedStatus
    provider_status: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    provider_order_ref: Optional[str] = None
    merchant_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    payer_email: Optional[str] = None
    form_id: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


class RedirectParams(BaseModel):
    """What a browser redirect back from checkout may be used for.

    Only the reference to query and the claimed status. Anything else in the
    query string is unsigned and never identifies an order.
    """
    reference: str = Field(..., description="Identifier to query the provider's status API with")
    advisory_status: Optional[str] = Field(None, description="Unverified status asserted by the redirect")


class ReconciliationResult(BaseModel):
    """What a reconcile call did to an order."""
    order_id: str
    outcome: ReconciliationOutcome
    status: str
    split: Optional[Dict[str, str]] = None
    email_sent: bool = False


class SweepSummary(BaseModel):
    """Totals of a pending-order sweep."""
    examined: int = 0
    settled: int = 0
    still_pending: int = 0
    already_terminal: int = 0
    errors: List[Dict[str, str]] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)
