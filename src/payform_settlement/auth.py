"""API key check and rate limiting for the order endpoints."""

import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from .settings import get_settings

logger = logging.getLogger(__name__)

# Missing credentials are answered by verify_api_key, not by FastAPI
bearer_scheme = HTTPBearer(auto_error=False)

limiter = Limiter(key_func=get_remote_address)


def order_rate_limit() -> str:
    """Limit applied to order creation, read per request from settings."""
    return get_settings().order_rate_limit


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def verify_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> str:
    """Require ``Authorization: Bearer <API_KEY>`` on merchant-facing routes.

    Webhook and redirect routes are called by providers and payers and
    authenticate differently, so they do not use this dependency.

    Raises:
        HTTPException: 401 for a missing or wrong key, 500 when no key is configured.
    """
    expected = get_settings().api_key
    if not expected:
        logger.error("API_KEY is not configured; refusing authenticated requests")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if credentials is None:
        raise _unauthorized("Missing API key")
    if not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        logger.warning("Request rejected: invalid API key")
        raise _unauthorized("Invalid API key")
    return credentials.credentials
