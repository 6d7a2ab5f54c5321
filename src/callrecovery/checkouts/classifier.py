"""
Delay-based OPEN -> ABANDONED classification.

Most checkouts arrive already ABANDONED from the platform sync with their own
abandonment time. This pass covers checkouts ingested as OPEN.
"""

from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.checkouts.models import Checkout, CheckoutStatus
from callrecovery.shared.database import utcnow
from callrecovery.shared.logging import get_logger

logger = get_logger(__name__)


async def mark_abandoned(
    session: AsyncSession,
    shop: str,
    delay_minutes: int,
    now: datetime | None = None,
) -> int:
    """Mark OPEN checkouts older than ``delay_minutes`` as ABANDONED.

    ``abandoned_at`` is set to ``now``, so the enqueuer's delay is measured
    again from this moment.

    Args:
        session: Async database session.
        shop: Merchant identifier.
        delay_minutes: Age a checkout must reach before it is considered abandoned.
        now: Current time, defaults to UTC now.

    Returns:
        Number of checkouts transitioned.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=max(0, delay_minutes))
    stmt = (
        update(Checkout)
        .where(
            Checkout.shop == shop,
            Checkout.status == CheckoutStatus.OPEN,
            Checkout.created_at <= cutoff,
        )
        .values(status=CheckoutStatus.ABANDONED, abandoned_at=now, updated_at=now)
    )
    result = await session.execute(stmt)
    count = result.rowcount or 0
    if count:
        logger.info("Marked checkouts abandoned", extra={"shop": shop, "count": count})
    return count
