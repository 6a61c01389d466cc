"""Settlement reconciliation: fee split, order resolution, ledger and service.

Only the dependency-free modules are re-exported here; import
``settlement.service``, ``settlement.ledger`` and ``settlement.api``
directly.
"""

from .errors import (
    SettlementError,
    AuthenticationFailure,
    MalformedNotification,
    OrderNotFound,
    AmbiguousOrder,
    DownstreamUnavailable,
    NotificationSendFailure,
    InvalidAmount,
    AmountMismatch,
    SettlementRejected,
)
from .splitter import FeeModel, Split, compute, PLATFORM_COMMISSION_RATE
from .models import (
    PaymentNotification,
    ProviderStatus,
    RedirectParams,
    ReconciliationResult,
    ReconciliationOutcome,
    ReportedStatus,
    NotificationChannel,
    Authenticity,
    SweepSummary,
    normalize_status,
)

__all__ = [
    # Errors
    "SettlementError",
    "AuthenticationFailure",
    "MalformedNotification",
    "OrderNotFound",
    "AmbiguousOrder",
    "DownstreamUnavailable",
    "NotificationSendFailure",
    "InvalidAmount",
    "AmountMismatch",
    "SettlementRejected",
    # Split
    "FeeModel",
    "Split",
    "compute",
    "PLATFORM_COMMISSION_RATE",
    # Value types
    "PaymentNotification",
    "ProviderStatus",
    "RedirectParams",
    "ReconciliationResult",
    "ReconciliationOutcome",
    "ReportedStatus",
    "NotificationChannel",
    "Authenticity",
    "SweepSummary",
    "normalize_status",
]
