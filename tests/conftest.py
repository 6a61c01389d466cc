"""Shared test fixtures and configuration."""

import os
from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("SIMULATOR_WEBHOOK_SECRET", "sim_test_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RETRY_BASE_DELAY", "0")

from payform_settlement.connectors import RawRequest, SimulatorConnector, SimulatorConfig
from payform_settlement.database import (
    Base,
    OrderRepository,
    OrderStatus,
    create_async_engine,
    get_async_session_factory,
)
from payform_settlement.notifications import LoggingEmailSender
from payform_settlement.services import OrderRequest, OrderService
from payform_settlement.settings import DEFAULT_FEE_MODELS
from payform_settlement.settlement.service import ReconciliationService

SIMULATOR_SECRET = "sim_test_secret"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(db_engine):
    """Session factory bound to the test database."""
    return get_async_session_factory(db_engine)


@pytest.fixture
def simulator():
    """Simulated provider sharing the test webhook secret."""
    return SimulatorConnector(SimulatorConfig(webhook_secret=SIMULATOR_SECRET))


@pytest.fixture
def connectors(simulator):
    return {"simulator": simulator}


@pytest.fixture
def email_sender():
    return LoggingEmailSender()


@pytest.fixture
def service(session_factory, connectors, email_sender):
    """Reconciliation service with no backoff delay."""
    return ReconciliationService(
        session_factory,
        connectors,
        fee_models=DEFAULT_FEE_MODELS,
        email_sender=email_sender,
        retry_base_delay=0,
    )


@pytest.fixture
def order_service(session_factory, connectors):
    return OrderService(
        session_factory,
        connectors,
        fee_models=DEFAULT_FEE_MODELS,
        public_base_url="https://payform.test",
    )


@pytest.fixture
def order_request():
    """A simulator order for 1000 INR."""
    return OrderRequest(
        form_id="form_1",
        payer_email="payer@example.com",
        payer_name="Asha",
        product_name="Workshop ticket",
        price=Decimal("1000"),
        payee_id="payee_1",
        provider="simulator",
    )


@pytest.fixture
async def pending_order(order_service, order_request):
    """An order created through OrderService and pending at the simulator."""
    return await order_service.create_order(order_request)


@pytest.fixture
def signed_webhook(simulator):
    """Build a signed simulator webhook delivery for an order."""
    def build(ref: str, **overrides) -> RawRequest:
        body = simulator.webhook_body(ref, **overrides)
        return RawRequest(headers={"X-Simulator-Signature": simulator.sign(body)}, body=body)
    return build


@pytest.fixture
def make_order(session_factory):
    """Insert an order directly, bypassing OrderService."""
    async def create(
        order_id: str,
        provider_order_ref: Optional[str] = None,
        status: str = OrderStatus.PENDING.value,
        payer_email: str = "payer@example.com",
        form_id: str = "form_1",
        created_at: Optional[datetime] = None,
        split: Optional[dict] = None,
    ):
        async with session_factory() as session, session.begin():
            order = await OrderRepository(session).create(
                order_id=order_id,
                provider="simulator",
                form_id=form_id,
                payer_email=payer_email,
                product_name="Workshop ticket",
                gross_amount=Decimal("1000"),
                payee_id="payee_1",
                split=split,
            )
            order.provider_order_ref = provider_order_ref
            order.status = status
            if created_at is not None:
                order.created_at = created_at
            await session.flush()
        return order
    return create
