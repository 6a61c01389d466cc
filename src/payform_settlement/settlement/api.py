"""Webhook and checkout-redirect endpoints."""

import logging
from typing import Dict, Mapping, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..connectors import ConnectorBase, RawRequest, get_connectors
from ..database import get_session_factory
from ..notifications import EmailSender, get_default_email_sender
from ..settings import get_settings
from .errors import SettlementError
from .pages import render_outcome_page
from .service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["settlement"])


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the provider."""
    status: str
    order_id: Optional[str] = None
    order_status: Optional[str] = None
    split: Optional[Dict[str, str]] = None


def get_reconciliation_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    connectors: Mapping[str, ConnectorBase] = Depends(get_connectors),
    email_sender: EmailSender = Depends(get_default_email_sender),
) -> ReconciliationService:
    return ReconciliationService.from_settings(session_factory, connectors, email_sender, get_settings())


async def _raw_request(request: Request) -> RawRequest:
    return RawRequest(
        method=request.method,
        headers=dict(request.headers),
        body=await request.body(),
        query=dict(request.query_params),
    )


@router.post("/webhook/{provider}", response_model=WebhookResponse)
async def receive_webhook(
    provider: str,
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Receive a provider webhook.

    Duplicate deliveries for an already settled order are acknowledged with
    200 so the provider stops retrying. Any other failure returns a non-2xx
    status and the provider redelivers.
    """
    raw = await _raw_request(request)
    try:
        result = await service.handle_webhook(provider, raw)
    except SettlementError as e:
        logger.warning(f"{provider} webhook failed: {type(e).__name__}: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))

    if result is None:
        return WebhookResponse(status="ignored")
    return WebhookResponse(
        status=result.outcome.value,
        order_id=result.order_id,
        order_status=result.status,
        split=result.split,
    )


@router.get("/verify/{provider}", response_class=HTMLResponse)
async def verify_redirect(
    provider: str,
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Landing page for payers returning from checkout.

    Always answers with an HTML page. The settlement decision comes from the
    provider's status API, not from the query string.
    """
    raw = await _raw_request(request)
    outcome = await service.verify_redirect(provider, raw)
    return HTMLResponse(content=render_outcome_page(outcome), status_code=outcome.status_code)
