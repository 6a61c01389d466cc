"""HTTP application: order creation, order lookup, webhooks and redirects."""

import logging
from contextlib import asynccontextmanager
from typing import Mapping

from fastapi import FastAPI, Request, Depends, HTTPException
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import __version__
from .auth import limiter, order_rate_limit, verify_api_key
from .connectors import ConnectorBase, get_connectors
from .database import (
    CommissionRepository,
    OrderRepository,
    SettlementEventRepository,
    close_db,
    get_db,
    get_session_factory,
    init_db,
)
from .services import OrderCreated, OrderRequest, OrderService
from .settings import get_settings
from .settlement.api import router as settlement_router
from .settlement.errors import SettlementError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="PayForm Settlement API", version=__version__, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(settlement_router)


def get_order_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    connectors: Mapping[str, ConnectorBase] = Depends(get_connectors),
) -> OrderService:
    return OrderService.from_settings(session_factory, connectors, get_settings())


@app.get("/health")
async def health(connectors: Mapping[str, ConnectorBase] = Depends(get_connectors)):
    return {
        "status": "ok",
        "version": __version__,
        "providers": {name: connector.health_check() for name, connector in connectors.items()},
    }


@app.post("/orders", response_model=OrderCreated)
@limiter.limit(order_rate_limit)
async def create_order(
    request: Request,
    body: OrderRequest,
    service: OrderService = Depends(get_order_service),
    api_key: str = Depends(verify_api_key),
):
    """
    Create an order and its provider checkout.

    Returns the local order id, the provider reference, checkout details and
    the fee split quoted to the payer.
    """
    try:
        return await service.create_order(body)
    except SettlementError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Return an order with its commission record and settlement trail."""
    order = await OrderRepository(db).get_by_id(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    commission = await CommissionRepository(db).get_by_order_id(order_id)
    events = await SettlementEventRepository(db).list_for_order(order_id)
    return {
        "order": order.to_dict(),
        "commission": commission.to_dict() if commission else None,
        "events": [event.to_dict() for event in events],
    }
