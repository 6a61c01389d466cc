"""Bounded exponential backoff for idempotent outbound calls."""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import httpx

from .errors import DownstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    httpx.TransportError,
    DownstreamUnavailable,
)


async def with_backoff(
    call: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 0.5,
    description: str = "request",
) -> T:
    """Run ``call`` with up to ``attempts`` tries, doubling the delay each time.

    Only read-side calls go through here; a committed ledger transition is
    never retried.

    Raises:
        DownstreamUnavailable: When every attempt failed with a transient error.
    """
    last_error: BaseException = DownstreamUnavailable(f"{description} was not attempted")
    for attempt in range(attempts):
        try:
            return await call()
        except TRANSIENT_ERRORS as e:
            last_error = e
            if attempt < attempts - 1:
                wait_time = base_delay * (2 ** attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{attempts}): {e}. "
                    f"Retrying in {wait_time}s"
                )
                await asyncio.sleep(wait_time)
    logger.error(f"{description} failed after {attempts} attempts: {last_error}")
    if isinstance(last_error, DownstreamUnavailable):
        raise last_error
    raise DownstreamUnavailable(f"{description} failed: {last_error}") from last_error
