"""Tests for order creation."""

import re
from decimal import Decimal
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from payform_settlement.database import (
    CommissionRepository,
    OrderRepository,
    SettlementEventRepository,
)
from payform_settlement.services import OrderRequest, generate_order_id
from payform_settlement.settlement.errors import DownstreamUnavailable, InvalidAmount
from payform_settlement.settlement.models import PaymentNotification, ReconciliationOutcome, ReportedStatus


class TestGenerateOrderId:
    def test_format(self):
        assert re.fullmatch(r"payform_\d{13}_[0-9a-z]{9}", generate_order_id())

    def test_unique(self):
        assert len({generate_order_id() for _ in range(100)}) == 100


class TestOrderRequest:
    """Validation of incoming order requests."""

    def test_defaults(self):
        request = OrderRequest(
            form_id="form_1",
            payer_email=" payer@example.com ",
            product_name="Ticket",
            price="499.50",
            payee_id="payee_1",
            currency="inr",
        )

        assert request.provider == "cashfree"
        assert request.currency == "INR"
        assert request.payer_email == "payer@example.com"
        assert request.price == Decimal("499.50")

    @pytest.mark.parametrize("email", ["not-an-email", "@example.com", "payer@localhost"])
    def test_rejects_bad_email(self, email):
        with pytest.raises(ValidationError):
            OrderRequest(form_id="f", payer_email=email, product_name="p", price=10, payee_id="x")

    @pytest.mark.parametrize("price", [0, -5])
    def test_rejects_non_positive_price(self, price):
        with pytest.raises(ValidationError):
            OrderRequest(form_id="f", payer_email="a@b.co", product_name="p", price=price, payee_id="x")

    @pytest.mark.parametrize("price", ["116.834", "100.165", "0.001"])
    def test_rejects_sub_paise_price(self, price):
        with pytest.raises(ValidationError):
            OrderRequest(form_id="f", payer_email="a@b.co", product_name="p", price=price, payee_id="x")

    def test_rejects_price_beyond_storage(self):
        with pytest.raises(ValidationError):
            OrderRequest(form_id="f", payer_email="a@b.co", product_name="p", price="10000000000", payee_id="x")

    def test_price_is_held_at_two_places(self):
        request = OrderRequest(form_id="f", payer_email="a@b.co", product_name="p", price="1000.5", payee_id="x")

        assert str(request.price) == "1000.50"


class TestOrderService:
    """Tests for OrderService.create_order."""

    async def test_create_order(self, order_service, order_request, simulator, session_factory):
        created = await order_service.create_order(order_request)

        assert created.status == "pending"
        assert created.provider == "simulator"
        assert created.provider_order_ref.startswith("sim_order_")
        assert created.checkout_url.endswith(created.provider_order_ref)
        assert created.gross_amount == "1000.00"
        assert created.split == {
            "gateway_fee": "28.00",
            "platform_commission": "30.00",
            "net_to_payee": "942.00",
        }

        provider_order = simulator.get_order(created.provider_order_ref)
        assert provider_order.merchant_order_id == created.order_id
        assert provider_order.amount == Decimal("1000")

        async with session_factory() as session:
            order = await OrderRepository(session).get_by_id(created.order_id)
            events = await SettlementEventRepository(session).list_for_order(created.order_id)

        assert order.status == "pending"
        assert order.provider_order_ref == created.provider_order_ref
        assert order.platform_commission == Decimal("30.00")
        assert [e.action for e in events] == ["created", "provider_order_created"]
        assert all(e.channel == "api" for e in events)

    async def test_return_url_points_at_verify_page(self, order_service, order_request, simulator):
        with patch.object(simulator, "create_order", wraps=simulator.create_order) as create:
            created = await order_service.create_order(order_request)

        provider_request = create.call_args.args[0]
        assert provider_request.return_url == (
            f"https://payform.test/verify/simulator?order_id={created.order_id}"
        )
        assert provider_request.notify_url == "https://payform.test/webhook/simulator"

    async def test_odd_price_settles_with_quoted_split(
        self, order_service, order_request, service, simulator, signed_webhook
    ):
        request = OrderRequest(**{**order_request.model_dump(), "price": "116.83"})
        created = await order_service.create_order(request)
        simulator.complete(created.provider_order_ref)

        result = await service.handle_webhook("simulator", signed_webhook(created.provider_order_ref))

        assert simulator.get_order(created.provider_order_ref).amount == Decimal("116.83")
        assert result.outcome is ReconciliationOutcome.APPLIED
        assert result.split == created.split

    async def test_settled_before_provider_call_returns(
        self, order_service, order_request, service, simulator, session_factory
    ):
        """A webhook echoing our order id can settle the order while it is still created."""
        create_at_provider = simulator.create_order

        async def create_then_settle(provider_request):
            result = await create_at_provider(provider_request)
            await service.reconcile(PaymentNotification(
                provider="simulator",
                source_provider_order_ref=provider_request.order_id,
                reported_status=ReportedStatus.CAPTURED,
                provider_status="PAID",
                reported_amount=provider_request.amount,
                currency="INR",
            ))
            return result

        with patch.object(simulator, "create_order", side_effect=create_then_settle):
            created = await order_service.create_order(order_request)

        async with session_factory() as session:
            order = await OrderRepository(session).get_by_id(created.order_id)
            events = await SettlementEventRepository(session).list_for_order(created.order_id)

        assert created.status == "paid"
        assert order.status == "paid"
        assert order.provider_order_ref == created.provider_order_ref
        assert [e.action for e in events] == ["created", "settled"]

    async def test_unknown_provider(self, order_service, order_request):
        request = order_request.model_copy(update={"provider": "paypal"})

        with pytest.raises(ValueError):
            await order_service.create_order(request)

    async def test_price_must_cover_fees(self, order_service, order_request):
        request = order_request.model_copy(update={"price": Decimal("3")})

        with pytest.raises(InvalidAmount):
            await order_service.create_order(request)

    async def test_provider_failure_marks_order_failed(
        self, order_service, order_request, simulator, session_factory
    ):
        simulator.config.fail_creates = True

        with pytest.raises(DownstreamUnavailable) as exc_info:
            await order_service.create_order(order_request)

        order_id = exc_info.value.order_id
        async with session_factory() as session:
            order = await OrderRepository(session).get_by_id(order_id)
            commission = await CommissionRepository(session).get_by_order_id(order_id)

        assert order.status == "failed"
        assert order.failure_reason.startswith("Provider order creation failed")
        assert commission is None
