"""Resolution of provider notifications to local orders."""

import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import Order, OrderRepository
from .errors import AmbiguousOrder, OrderNotFound
from .models import PaymentNotification

logger = logging.getLogger(__name__)


class OrderResolver:
    """Resolve a PaymentNotification to exactly one local Order.

    Providers report the same order under different identifiers depending on
    the flow (gateway order id, our own order id echoed back, payment link id).
    Strategies are tried in strict priority order and the first one that
    matches anything wins:

    1. ``provider_order_ref`` equals the notification's primary reference
    2. ``order_id`` equals the notification's primary reference
    3. ``provider_order_ref`` equals one of the secondary references
    4. the payer's most recent pending order on the same form

    Strategies 1-3 use unique keys, so more than one hit is an integrity
    fault and raises AmbiguousOrder. Strategy 4 is best effort.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.orders = OrderRepository(session)

    async def resolve(self, notification: PaymentNotification) -> Order:
        """Find the order a notification refers to.

        Raises:
            OrderNotFound: If no strategy matched.
            AmbiguousOrder: If a unique-key strategy matched several orders.
        """
        ref = notification.source_provider_order_ref

        if ref:
            matches = await self.orders.find_by_provider_order_ref(ref)
            if matches:
                return self._single(matches, "provider_order_ref", ref)

            matches = await self.orders.find_by_order_id(ref)
            if matches:
                return self._single(matches, "order_id", ref)

        secondary = [r for r in notification.source_secondary_refs if r != ref]
        if secondary:
            matches = await self.orders.find_by_provider_order_refs(secondary)
            if matches:
                return self._single(matches, "secondary_ref", ", ".join(secondary))

        if notification.payer_email and notification.form_id:
            candidates = await self.orders.find_pending_for_payer(
                notification.payer_email, notification.form_id
            )
            if candidates:
                chosen = candidates[0]
                if len(candidates) > 1:
                    logger.warning(
                        f"Heuristic match for {notification.payer_email} on form "
                        f"{notification.form_id} found {len(candidates)} pending orders; "
                        f"using most recent {chosen.order_id}"
                    )
                else:
                    logger.info(f"Resolved order {chosen.order_id} by payer heuristic")
                return chosen

        logger.warning(
            f"No order found for {notification.provider} notification "
            f"(ref={ref}, secondary={notification.source_secondary_refs})"
        )
        raise OrderNotFound(f"No order matches reference {ref!r}")

    def _single(self, matches: List[Order], strategy: str, key: str) -> Order:
        if len(matches) > 1:
            ids = [o.order_id for o in matches]
            logger.error(f"Integrity fault: {strategy} {key!r} matches orders {ids}")
            raise AmbiguousOrder(f"{strategy} {key!r} matches {len(matches)} orders")
        order = matches[0]
        logger.info(f"Resolved order {order.order_id} by {strategy}")
        return order
