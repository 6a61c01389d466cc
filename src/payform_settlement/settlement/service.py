"""Service layer for settlement reconciliation."""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Any, Mapping, Optional

import httpx
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..connectors.base import ConnectorBase, RawRequest
from ..database import Order, OrderRepository, OrderStatus
from ..notifications import EmailSender, SendResult
from ..settings import Settings
from .errors import (
    AmountMismatch,
    AuthenticationFailure,
    DownstreamUnavailable,
    MalformedNotification,
    NotificationSendFailure,
    OrderNotFound,
    SettlementError,
    SettlementRejected,
)
from .identity import OrderResolver
from .ledger import LedgerOutcome, SettlementLedger
from .models import (
    Authenticity,
    NotificationChannel,
    PaymentNotification,
    ReconciliationOutcome,
    ReconciliationResult,
    ReportedStatus,
    SweepSummary,
    CANCELLATION_STATUSES,
)
from .retry import with_backoff
from .splitter import FeeModel, PLATFORM_COMMISSION_RATE, compute

logger = logging.getLogger(__name__)


class RedirectState(str, enum.Enum):
    """Outcome page shown to a payer returning from checkout."""
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ERROR = "error"


ERROR_MESSAGES = {
    AuthenticationFailure: "We could not verify this payment confirmation.",
    MalformedNotification: "This payment link is incomplete.",
    OrderNotFound: "We could not find this payment.",
    AmountMismatch: "The amount paid does not match this order. Our team will follow up.",
}
DEFAULT_ERROR_MESSAGE = (
    "We could not confirm your payment right now. "
    "If you were charged, it will be confirmed shortly."
)


@dataclass
class RedirectOutcome:
    state: RedirectState
    status_code: int = 200
    order: Optional[Dict[str, Any]] = None
    message: Optional[str] = None


class ReconciliationService:
    """Turns provider notifications into settled orders.

    Webhooks, redirects and the pending-order sweep all end in ``reconcile``.
    Redirects and the sweep first re-fetch the provider's authoritative
    status; nothing here trusts an unsigned redirect parameter.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        connectors: Mapping[str, ConnectorBase],
        fee_models: Mapping[str, FeeModel],
        email_sender: Optional[EmailSender] = None,
        platform_rate: Decimal = PLATFORM_COMMISSION_RATE,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
    ):
        """Initialize the reconciliation service.

        Args:
            session_factory: Factory for short-lived database sessions.
            connectors: Gateway adapters keyed by provider name.
            fee_models: Gateway fee model per provider.
            email_sender: Mailer for payment confirmations; None disables email.
            platform_rate: Platform commission in percent.
            retry_attempts: Attempts for provider status queries and email.
            retry_base_delay: First backoff delay in seconds.
        """
        self.session_factory = session_factory
        self.connectors = connectors
        self.fee_models = fee_models
        self.email_sender = email_sender
        self.platform_rate = platform_rate
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.ledger = SettlementLedger(session_factory)

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        connectors: Mapping[str, ConnectorBase],
        email_sender: Optional[EmailSender],
        settings: Settings,
    ) -> "ReconciliationService":
        return cls(
            session_factory,
            connectors,
            fee_models=settings.fee_models,
            email_sender=email_sender,
            platform_rate=settings.platform_commission_rate,
            retry_attempts=settings.retry_attempts,
            retry_base_delay=settings.retry_base_delay,
        )

    def connector(self, provider: str) -> ConnectorBase:
        try:
            return self.connectors[provider]
        except KeyError:
            raise MalformedNotification(f"Unknown provider '{provider}'") from None

    async def handle_webhook(self, provider: str, raw: RawRequest) -> Optional[ReconciliationResult]:
        """Authenticate, normalise and reconcile a webhook delivery.

        Returns:
            The reconciliation result, or None for event types that carry no
            payment outcome.

        Raises:
            AuthenticationFailure: Signature missing or wrong; nothing is read or written.
            MalformedNotification: Unknown provider or unparseable payload.
        """
        connector = self.connector(provider)
        if connector.authenticate(raw) is Authenticity.FORGED:
            logger.error(f"Rejected {provider} webhook: signature verification failed")
            raise AuthenticationFailure(f"Invalid {provider} webhook signature")

        try:
            notification = connector.normalize(raw)
        except ValidationError as e:
            raise MalformedNotification(f"Unusable {provider} webhook payload") from e
        if notification is None:
            return None

        logger.info(
            f"Normalised {provider} {notification.event_type} for {notification.source_provider_order_ref}: "
            f"{notification.reported_status.value}"
        )
        return await self.reconcile(notification)

    async def reconcile(self, notification: PaymentNotification) -> ReconciliationResult:
        """Apply a normalised notification to the order it refers to.

        Pending reports never mutate anything. Captured reports settle the
        order as paid with a freshly computed split; failures settle it as
        failed, or cancelled when the provider reports a cancellation.

        Raises:
            OrderNotFound: No local order matches.
            AmbiguousOrder: Unique-key resolution matched several orders.
            AmountMismatch: Provider reported less than the order's gross amount.
            SettlementRejected: The ledger refused the transition.
            DownstreamUnavailable: The store could not be reached.
        """
        async with self.session_factory() as session:
            order = await OrderResolver(session).resolve(notification)

        if notification.reported_status is ReportedStatus.PENDING:
            logger.info(f"Order {order.order_id} still pending at {notification.provider}; no change")
            return ReconciliationResult(
                order_id=order.order_id,
                outcome=ReconciliationOutcome.PENDING,
                status=order.status,
            )

        if order.is_terminal:
            logger.warning(
                f"Order {order.order_id} already {order.status}; duplicate "
                f"{notification.reported_status.value} via {notification.channel.value} ignored"
            )
            return ReconciliationResult(
                order_id=order.order_id,
                outcome=ReconciliationOutcome.ALREADY_TERMINAL,
                status=order.status,
            )

        detail = {
            "provider": notification.provider,
            "event_type": notification.event_type,
            "provider_status": notification.provider_status,
            "reported_amount": notification.reported_amount,
        }

        split = None
        if notification.reported_status is ReportedStatus.CAPTURED:
            self._check_amount(order, notification)
            split = compute(order.gross_amount, self._fee_model(order), self.platform_rate)
            result = await self.ledger.apply_if_absent(
                order.order_id,
                OrderStatus.PAID.value,
                split=split,
                channel=notification.channel.value,
                provider_payment_id=notification.provider_payment_id,
                commission_rate=self.platform_rate,
                detail=detail,
            )
        else:
            target = OrderStatus.CANCELLED if notification.is_cancellation else OrderStatus.FAILED
            result = await self.ledger.apply_if_absent(
                order.order_id,
                target.value,
                channel=notification.channel.value,
                provider_payment_id=notification.provider_payment_id,
                failure_reason=f"{notification.provider} reported {notification.provider_status}",
                detail=detail,
            )

        if result.outcome is LedgerOutcome.REJECTED:
            raise SettlementRejected(result.reason or "Ledger rejected the transition", order_id=order.order_id)

        if result.outcome is LedgerOutcome.ALREADY_TERMINAL:
            return ReconciliationResult(
                order_id=order.order_id,
                outcome=ReconciliationOutcome.ALREADY_TERMINAL,
                status=result.status or await self._current_status(order.order_id),
            )

        email_sent = False
        if result.status == OrderStatus.PAID.value:
            email_sent = await self._send_confirmation(order)

        return ReconciliationResult(
            order_id=order.order_id,
            outcome=ReconciliationOutcome.APPLIED,
            status=result.status,
            split=split.to_dict() if split else None,
            email_sent=email_sent,
        )

    async def verify_redirect(self, provider: str, raw: RawRequest) -> RedirectOutcome:
        """Handle a payer returning from checkout.

        The redirect only identifies the order. Its status is re-fetched from
        the provider and fed through ``reconcile``; the page reflects the
        order's status afterwards, never the redirect's claim.
        """
        try:
            connector = self.connector(provider)
            if connector.authenticate_redirect(raw) is Authenticity.FORGED:
                logger.error(f"Rejected {provider} redirect: signature verification failed")
                raise AuthenticationFailure(f"Invalid {provider} redirect signature")

            params = connector.redirect_params(raw)
            status = await with_backoff(
                lambda: connector.fetch_status(params.reference),
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                description=f"{provider} status query for {params.reference}",
            )
            notification = connector.notification_from_status(
                status, NotificationChannel.REDIRECT, params.reference
            )
            result = await self.reconcile(notification)
        except ValidationError:
            logger.warning(f"Unusable {provider} redirect or status response")
            return RedirectOutcome(RedirectState.ERROR, 400, message=ERROR_MESSAGES[MalformedNotification])
        except SettlementError as e:
            logger.warning(f"{provider} redirect not settled: {type(e).__name__}: {e}")
            status_code = 400 if isinstance(e, AuthenticationFailure) else e.status_code
            return RedirectOutcome(
                RedirectState.ERROR,
                status_code,
                message=ERROR_MESSAGES.get(type(e), DEFAULT_ERROR_MESSAGE),
            )

        state = self._redirect_state(result.status, params.advisory_status)
        return RedirectOutcome(state, order=await self._order_summary(result.order_id))

    async def sweep_pending(
        self,
        older_than: timedelta,
        provider: Optional[str] = None,
        limit: int = 100,
    ) -> SweepSummary:
        """Re-check orders pending for longer than ``older_than`` with their provider.

        Recovers settlements whose webhook never arrived. Each order is
        reconciled independently; one failure does not stop the sweep.
        """
        cutoff = datetime.utcnow() - older_than
        async with self.session_factory() as session:
            orders = await OrderRepository(session).list_stale_pending(cutoff, provider, limit)

        summary = SweepSummary(examined=len(orders))
        logger.info(f"Sweeping {len(orders)} orders pending since before {cutoff.isoformat()}")

        for order in orders:
            try:
                connector = self.connector(order.provider)
                reference = connector.status_reference(order)
                status = await with_backoff(
                    lambda: connector.fetch_status(reference),
                    attempts=self.retry_attempts,
                    base_delay=self.retry_base_delay,
                    description=f"{order.provider} status query for {reference}",
                )
                notification = connector.notification_from_status(
                    status, NotificationChannel.SWEEP, reference
                )
                result = await self.reconcile(notification)
            except (SettlementError, ValidationError) as e:
                logger.error(f"Sweep of order {order.order_id} failed: {type(e).__name__}: {e}")
                summary.errors.append({
                    "order_id": order.order_id,
                    "error": type(e).__name__,
                    "detail": str(e),
                })
                continue

            if result.outcome is ReconciliationOutcome.APPLIED:
                summary.settled += 1
            elif result.outcome is ReconciliationOutcome.ALREADY_TERMINAL:
                summary.already_terminal += 1
            else:
                summary.still_pending += 1

        logger.info(
            f"Sweep finished: {summary.settled} settled, {summary.still_pending} pending, "
            f"{len(summary.errors)} errors"
        )
        return summary

    def _fee_model(self, order: Order) -> FeeModel:
        try:
            return self.fee_models[order.provider]
        except KeyError:
            raise SettlementRejected(
                f"No fee model for provider '{order.provider}'", order_id=order.order_id
            ) from None

    def _check_amount(self, order: Order, notification: PaymentNotification) -> None:
        reported = notification.reported_amount
        if reported is not None and reported < order.gross_amount:
            logger.error(
                f"Order {order.order_id}: {notification.provider} reported {reported}, "
                f"expected {order.gross_amount}; left for manual reconciliation"
            )
            raise AmountMismatch(
                f"Reported amount {reported} is below {order.gross_amount}", order_id=order.order_id
            )
        currency = notification.currency
        if currency and currency.upper() != order.currency.upper():
            logger.error(f"Order {order.order_id}: currency {currency} does not match {order.currency}")
            raise AmountMismatch(f"Reported currency {currency} != {order.currency}", order_id=order.order_id)

    @staticmethod
    def _redirect_state(status: str, advisory_status: Optional[str]) -> RedirectState:
        if status == OrderStatus.PAID.value:
            return RedirectState.SUCCESS
        if status == OrderStatus.FAILED.value:
            return RedirectState.FAILED
        if status == OrderStatus.CANCELLED.value:
            return RedirectState.CANCELLED
        # The payer said they cancelled but the provider has not settled it
        if advisory_status and advisory_status.strip().lower() in CANCELLATION_STATUSES:
            return RedirectState.CANCELLED
        return RedirectState.PENDING

    async def _current_status(self, order_id: str) -> str:
        async with self.session_factory() as session:
            order = await OrderRepository(session).get_by_id(order_id)
        return order.status if order else OrderStatus.PENDING.value

    async def _order_summary(self, order_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            order = await OrderRepository(session).get_by_id(order_id)
        return order.to_dict() if order else None

    async def _send_confirmation(self, order: Order) -> bool:
        """Email the payer; failures are logged and never undo the settlement."""
        if self.email_sender is None:
            return False
        try:
            await self._deliver_confirmation(order)
        except NotificationSendFailure as e:
            logger.warning(f"{e}; settlement of order {order.order_id} stands")
            return False
        return True

    async def _deliver_confirmation(self, order: Order) -> SendResult:
        template_data = {
            "order_id": order.order_id,
            "product_name": order.product_name,
            "amount": str(order.gross_amount),
            "currency": order.currency,
            "payer_name": order.payer_name,
            "form_id": order.form_id,
        }
        try:
            result = await with_backoff(
                lambda: self.email_sender.send(order.payer_email, template_data),
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                description=f"Confirmation email for {order.order_id}",
            )
        except (DownstreamUnavailable, httpx.HTTPError) as e:
            raise NotificationSendFailure(
                f"Confirmation email for order {order.order_id} failed: {e}", order_id=order.order_id
            ) from e
        if not result.success:
            raise NotificationSendFailure(
                f"Confirmation email for order {order.order_id} rejected: {result.error}",
                order_id=order.order_id,
            )
        return result
