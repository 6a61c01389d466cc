"""Error taxonomy for settlement processing.

Every error carries the HTTP status the webhook surface answers with and
whether the failure is transient. Authentication and parsing failures are
raised before any ledger access; ledger-layer failures propagate to the
caller so that providers retry their webhook deliveries.
"""

from typing import Optional


class SettlementError(Exception):
    """Base class for all settlement errors."""
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class AuthenticationFailure(SettlementError):
    """Missing, stale or forged signature."""
    status_code = 401


class MalformedNotification(SettlementError):
    """Payload or query string could not be parsed into a notification."""
    status_code = 400


class OrderNotFound(SettlementError):
    """No resolution strategy matched a local order."""
    status_code = 404


class AmbiguousOrder(SettlementError):
    """A unique-key strategy matched more than one order (data-integrity fault)."""
    status_code = 500


class DownstreamUnavailable(SettlementError):
    """Gateway, store or mailer could not be reached."""
    status_code = 500
    retryable = True


class NotificationSendFailure(SettlementError):
    """Confirmation email could not be delivered."""
    status_code = 500


class InvalidAmount(SettlementError, ValueError):
    """Gross amount is not positive or cannot cover the fees."""
    status_code = 400


class AmountMismatch(SettlementError):
    """Provider reported less money than the order's gross amount."""
    status_code = 422


class SettlementRejected(SettlementError):
    """Ledger refused the transition."""
    status_code = 500
