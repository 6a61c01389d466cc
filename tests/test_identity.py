"""Tests for resolving notifications to local orders."""

from datetime import datetime, timedelta

import pytest

from payform_settlement.database import OrderStatus
from payform_settlement.settlement.errors import AmbiguousOrder, OrderNotFound
from payform_settlement.settlement.identity import OrderResolver
from payform_settlement.settlement.models import PaymentNotification, ReportedStatus


def notification(ref=None, secondary=None, email=None, form_id=None) -> PaymentNotification:
    return PaymentNotification(
        provider="simulator",
        source_provider_order_ref=ref,
        source_secondary_refs=secondary or [],
        reported_status=ReportedStatus.CAPTURED,
        payer_email=email,
        form_id=form_id,
    )


async def resolve(session_factory, note: PaymentNotification):
    async with session_factory() as session:
        return await OrderResolver(session).resolve(note)


class TestOrderResolver:
    """Strategy priority and failure modes of OrderResolver."""

    async def test_provider_ref_wins_over_order_id(self, session_factory, make_order):
        """A reference that is one order's provider ref and another's order id resolves to the former."""
        await make_order("order_a", provider_order_ref="X")
        await make_order("X", provider_order_ref="ref_b")

        order = await resolve(session_factory, notification(ref="X"))

        assert order.order_id == "order_a"

    async def test_falls_back_to_order_id(self, session_factory, make_order):
        await make_order("payform_1", provider_order_ref="cf_123")

        order = await resolve(session_factory, notification(ref="payform_1"))

        assert order.order_id == "payform_1"

    async def test_secondary_refs(self, session_factory, make_order):
        """Secondary references are matched against provider refs."""
        await make_order("payform_1", provider_order_ref="link_123")

        order = await resolve(session_factory, notification(ref="unknown", secondary=["link_123"]))

        assert order.order_id == "payform_1"

    async def test_heuristic_picks_most_recent_pending(self, session_factory, make_order):
        now = datetime.utcnow()
        await make_order("older", created_at=now - timedelta(minutes=5))
        await make_order("newer", created_at=now - timedelta(minutes=1))
        await make_order("paid", status=OrderStatus.PAID.value, created_at=now)

        order = await resolve(
            session_factory,
            notification(ref="unknown", email="PAYER@example.com", form_id="form_1"),
        )

        assert order.order_id == "newer"

    async def test_heuristic_needs_email_and_form(self, session_factory, make_order):
        await make_order("payform_1")

        with pytest.raises(OrderNotFound):
            await resolve(session_factory, notification(ref="unknown", email="payer@example.com"))

    async def test_not_found(self, session_factory, make_order):
        await make_order("payform_1", provider_order_ref="sim_1")

        with pytest.raises(OrderNotFound):
            await resolve(session_factory, notification(ref="nope", secondary=["also_nope"]))

    async def test_ambiguous_secondary_match(self, session_factory, make_order):
        """Two orders matched by a unique-key strategy is an integrity fault."""
        await make_order("payform_1", provider_order_ref="ref_a")
        await make_order("payform_2", provider_order_ref="ref_b")

        with pytest.raises(AmbiguousOrder):
            await resolve(session_factory, notification(secondary=["ref_a", "ref_b"]))

    async def test_secondary_equal_to_primary_is_skipped(self, session_factory, make_order):
        await make_order("payform_1", provider_order_ref="ref_a")

        with pytest.raises(OrderNotFound):
            await resolve(session_factory, notification(ref="missing", secondary=["missing"]))
