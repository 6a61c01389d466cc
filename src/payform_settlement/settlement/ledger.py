"""At-most-once terminal transitions for orders."""

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import (
    OrderRepository,
    CommissionRepository,
    SettlementEventRepository,
    OrderStatus,
    SettlementAction,
    TERMINAL_STATUSES,
)
from .errors import DownstreamUnavailable
from .splitter import Split, PLATFORM_COMMISSION_RATE

logger = logging.getLogger(__name__)


class LedgerOutcome(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_TERMINAL = "already_terminal"
    REJECTED = "rejected"


@dataclass(frozen=True)
class LedgerResult:
    outcome: LedgerOutcome
    order_id: str
    status: Optional[str] = None
    previous_status: Optional[str] = None
    reason: Optional[str] = None


class SettlementLedger:
    """Authoritative store of order outcomes and commission records.

    Each call runs in its own transaction. The status change is a conditional
    update that only matches a non-terminal order, and the commission row and
    audit event are written in the same transaction, so concurrent callers
    settle an order exactly once and a failure leaves nothing behind.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def apply_if_absent(
        self,
        order_id: str,
        target_status: str,
        split: Optional[Split] = None,
        channel: str = "webhook",
        provider_payment_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        commission_rate: Decimal = PLATFORM_COMMISSION_RATE,
        detail: Optional[Dict[str, Any]] = None,
    ) -> LedgerResult:
        """Move an order into a terminal status unless it already is in one.

        Args:
            order_id: Local order identifier.
            target_status: One of paid, failed or cancelled.
            split: Required for paid, forbidden otherwise.
            channel: Entry point that triggered the transition.
            provider_payment_id: Provider's payment identifier, if known.
            failure_reason: Stored on failed and cancelled orders.
            commission_rate: Platform rate recorded with the commission.
            detail: Extra audit information for the settlement event.

        Returns:
            LedgerResult with APPLIED, ALREADY_TERMINAL or REJECTED.

        Raises:
            DownstreamUnavailable: If the store could not be written.
        """
        rejection = self._check_arguments(target_status, split)
        if rejection:
            logger.error(f"Rejected transition of {order_id} to {target_status}: {rejection}")
            return LedgerResult(LedgerOutcome.REJECTED, order_id, reason=rejection)

        try:
            async with self.session_factory() as session, session.begin():
                result = await self._apply(
                    session,
                    order_id,
                    target_status,
                    split,
                    channel,
                    provider_payment_id,
                    failure_reason,
                    commission_rate,
                    detail,
                )
        except IntegrityError:
            # Another transaction recorded the commission first
            logger.warning(f"Order {order_id} was settled concurrently")
            return LedgerResult(LedgerOutcome.ALREADY_TERMINAL, order_id)
        except SQLAlchemyError as e:
            logger.error(f"Ledger write for order {order_id} failed: {e}")
            raise DownstreamUnavailable(f"Ledger unavailable: {e}", order_id=order_id) from e

        if result.outcome == LedgerOutcome.APPLIED:
            logger.info(f"Order {order_id}: {result.previous_status} -> {result.status} via {channel}")
        elif result.outcome == LedgerOutcome.ALREADY_TERMINAL:
            logger.warning(
                f"Order {order_id} already {result.status}; ignoring {target_status} via {channel}"
            )
        else:
            logger.error(f"Rejected transition of {order_id} to {target_status}: {result.reason}")
        return result

    @staticmethod
    def _check_arguments(target_status: str, split: Optional[Split]) -> Optional[str]:
        if target_status not in TERMINAL_STATUSES:
            return f"{target_status} is not a terminal status"
        if target_status == OrderStatus.PAID.value and split is None:
            return "paid transition requires a split"
        if target_status != OrderStatus.PAID.value and split is not None:
            return f"{target_status} transition must not carry a split"
        return None

    async def _apply(
        self,
        session: AsyncSession,
        order_id: str,
        target_status: str,
        split: Optional[Split],
        channel: str,
        provider_payment_id: Optional[str],
        failure_reason: Optional[str],
        commission_rate: Decimal,
        detail: Optional[Dict[str, Any]],
    ) -> LedgerResult:
        orders = OrderRepository(session)
        order = await orders.get_by_id(order_id)
        if order is None:
            return LedgerResult(LedgerOutcome.REJECTED, order_id, reason="unknown order")
        if order.is_terminal:
            return LedgerResult(LedgerOutcome.ALREADY_TERMINAL, order_id, status=order.status)

        previous_status = order.status
        values: Dict[str, Any] = {}
        if provider_payment_id:
            values["provider_payment_id"] = provider_payment_id

        if split is not None:
            if order.has_split and (
                order.gateway_fee != split.gateway_fee
                or order.platform_commission != split.platform_commission
                or order.net_to_payee != split.net_to_payee
            ):
                return LedgerResult(
                    LedgerOutcome.REJECTED,
                    order_id,
                    status=order.status,
                    reason="split differs from the split quoted at order creation",
                )
            values.update(
                gateway_fee=split.gateway_fee,
                platform_commission=split.platform_commission,
                net_to_payee=split.net_to_payee,
            )
        elif failure_reason:
            values["failure_reason"] = failure_reason

        changed = await orders.transition_if_open(order_id, target_status, values)
        if not changed:
            return LedgerResult(LedgerOutcome.ALREADY_TERMINAL, order_id)

        if split is not None:
            await CommissionRepository(session).create(
                order_id=order_id,
                payee_id=order.payee_id,
                platform_commission=split.platform_commission,
                gateway_fee=split.gateway_fee,
                net_to_payee=split.net_to_payee,
                commission_rate=commission_rate,
                provider_payment_id=provider_payment_id,
            )

        event_detail = dict(detail or {})
        if split is not None:
            event_detail["split"] = split.to_dict()
        if failure_reason:
            event_detail["failure_reason"] = failure_reason
        await SettlementEventRepository(session).create(
            order_id=order_id,
            action=SettlementAction.SETTLED.value,
            previous_status=previous_status,
            new_status=target_status,
            channel=channel,
            detail=event_detail or None,
        )

        return LedgerResult(
            LedgerOutcome.APPLIED,
            order_id,
            status=target_status,
            previous_status=previous_status,
        )
