"""Repository layer for order settlement persistence."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List, Sequence

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Order,
    CommissionRecord,
    SettlementEvent,
    OrderStatus,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


class OrderRepository:
    """Repository for Order lookups and conditional updates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        order_id: str,
        provider: str,
        form_id: str,
        payer_email: str,
        product_name: str,
        gross_amount: Decimal,
        payee_id: str,
        currency: str = "INR",
        payer_name: Optional[str] = None,
        payer_phone: Optional[str] = None,
        split: Optional[Dict[str, Decimal]] = None,
    ) -> Order:
        """Create a new order in the ``created`` state.

        Args:
            order_id: Locally generated order identifier.
            provider: Payment provider name.
            form_id: Form the payment request belongs to.
            payer_email: Payer email address.
            product_name: Product being paid for.
            gross_amount: Amount charged to the payer in major units.
            payee_id: Tenant receiving the net proceeds.
            currency: Three-letter currency code.
            payer_name: Optional payer display name.
            payer_phone: Optional payer phone number.
            split: Optional quoted split (gateway_fee, platform_commission, net_to_payee).

        Returns:
            Created Order instance.
        """
        order = Order(
            order_id=order_id,
            provider=provider,
            form_id=form_id,
            payer_email=payer_email,
            payer_name=payer_name,
            payer_phone=payer_phone,
            product_name=product_name,
            gross_amount=gross_amount,
            currency=currency.upper(),
            payee_id=payee_id,
            status=OrderStatus.CREATED.value,
        )
        if split:
            order.gateway_fee = split["gateway_fee"]
            order.platform_commission = split["platform_commission"]
            order.net_to_payee = split["net_to_payee"]

        self.session.add(order)
        await self.session.flush()

        logger.info(f"Created order {order_id} for {provider} ({gross_amount} {order.currency})")
        return order

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(Order).where(Order.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def find_by_order_id(self, order_id: str) -> List[Order]:
        result = await self.session.execute(
            select(Order).where(Order.order_id == order_id)
        )
        return list(result.scalars().all())

    async def find_by_provider_order_ref(self, provider_order_ref: str) -> List[Order]:
        """Return every order carrying ``provider_order_ref``.

        A list rather than a scalar so callers can detect integrity faults.
        """
        result = await self.session.execute(
            select(Order).where(Order.provider_order_ref == provider_order_ref)
        )
        return list(result.scalars().all())

    async def find_by_provider_order_refs(self, refs: Sequence[str]) -> List[Order]:
        if not refs:
            return []
        result = await self.session.execute(
            select(Order).where(Order.provider_order_ref.in_(list(refs)))
        )
        return list(result.scalars().all())

    async def find_pending_for_payer(self, payer_email: str, form_id: str) -> List[Order]:
        """Pending orders of a payer on a form, most recently created first."""
        result = await self.session.execute(
            select(Order)
            .where(
                and_(
                    func.lower(Order.payer_email) == payer_email.strip().lower(),
                    Order.form_id == form_id,
                    Order.status == OrderStatus.PENDING.value,
                )
            )
            .order_by(Order.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_stale_pending(
        self,
        created_before: datetime,
        provider: Optional[str] = None,
        limit: int = 100,
    ) -> List[Order]:
        """Pending orders created before ``created_before``, oldest first."""
        conditions = [
            Order.status == OrderStatus.PENDING.value,
            Order.created_at < created_before,
        ]
        if provider:
            conditions.append(Order.provider == provider)
        result = await self.session.execute(
            select(Order)
            .where(and_(*conditions))
            .order_by(Order.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def assign_provider_ref(self, order_id: str, provider_order_ref: str) -> bool:
        """Record the provider's order reference and move created -> pending.

        The reference is stored whenever it is still unset, even if a webhook
        already settled the order; only the status change depends on the
        order still being ``created``.

        Returns:
            True if the order was still in ``created`` and is now pending.
        """
        now = datetime.utcnow()
        await self.session.execute(
            update(Order)
            .where(and_(Order.order_id == order_id, Order.provider_order_ref.is_(None)))
            .values(provider_order_ref=provider_order_ref, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            update(Order)
            .where(
                and_(
                    Order.order_id == order_id,
                    Order.status == OrderStatus.CREATED.value,
                )
            )
            .values(status=OrderStatus.PENDING.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition_if_open(
        self,
        order_id: str,
        new_status: str,
        values: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Compare-and-swap the order into ``new_status``.

        The update only matches while the order is non-terminal, so of two
        concurrent callers exactly one sees a changed row.

        Returns:
            True if this call performed the transition.
        """
        now = datetime.utcnow()
        changes: Dict[str, Any] = {"status": new_status, "updated_at": now, "settled_at": now}
        if values:
            changes.update(values)
        result = await self.session.execute(
            update(Order)
            .where(
                and_(
                    Order.order_id == order_id,
                    Order.status.notin_(list(TERMINAL_STATUSES)),
                )
            )
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class CommissionRepository:
    """Repository for CommissionRecord rows (insert-only)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        order_id: str,
        payee_id: str,
        platform_commission: Decimal,
        gateway_fee: Decimal,
        net_to_payee: Decimal,
        commission_rate: Decimal,
        provider_payment_id: Optional[str] = None,
    ) -> CommissionRecord:
        record = CommissionRecord(
            order_id=order_id,
            payee_id=payee_id,
            platform_commission=platform_commission,
            gateway_fee=gateway_fee,
            net_to_payee=net_to_payee,
            commission_rate=commission_rate,
            provider_payment_id=provider_payment_id,
        )
        self.session.add(record)
        await self.session.flush()

        logger.info(f"Recorded commission {platform_commission} for order {order_id}")
        return record

    async def get_by_order_id(self, order_id: str) -> Optional[CommissionRecord]:
        result = await self.session.execute(
            select(CommissionRecord).where(CommissionRecord.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def count_for_order(self, order_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(CommissionRecord).where(CommissionRecord.order_id == order_id)
        )
        return int(result.scalar_one())

    async def list_by_payee(self, payee_id: str, limit: int = 100, offset: int = 0) -> List[CommissionRecord]:
        result = await self.session.execute(
            select(CommissionRecord)
            .where(CommissionRecord.payee_id == payee_id)
            .order_by(CommissionRecord.recorded_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())


class SettlementEventRepository:
    """Repository for the append-only settlement audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        order_id: str,
        action: str,
        new_status: str,
        channel: str,
        previous_status: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> SettlementEvent:
        event = SettlementEvent(
            order_id=order_id,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            channel=channel,
        )
        if detail:
            event.detail = detail

        self.session.add(event)
        await self.session.flush()

        logger.debug(f"Settlement event for order {order_id}: {action} -> {new_status} via {channel}")
        return event

    async def list_for_order(self, order_id: str, limit: int = 100) -> List[SettlementEvent]:
        result = await self.session.execute(
            select(SettlementEvent)
            .where(SettlementEvent.order_id == order_id)
            .order_by(SettlementEvent.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())
