"""
Removal of all data held for a merchant.
"""

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.calls.models import CallJob
from callrecovery.checkouts.models import Checkout
from callrecovery.merchants.models import MerchantSettings
from callrecovery.orders.models import Order
from callrecovery.shared.logging import get_logger

logger = get_logger(__name__)


async def teardown_tenant(session: AsyncSession, shop: str) -> dict[str, int]:
    """Delete call jobs, checkouts, orders and settings of ``shop``.

    Returns:
        Deleted row counts per table.
    """
    counts: dict[str, int] = {}
    for name, model in (
        ("call_jobs", CallJob),
        ("checkouts", Checkout),
        ("orders", Order),
        ("merchant_settings", MerchantSettings),
    ):
        result = await session.execute(delete(model).where(model.shop == shop))
        counts[name] = result.rowcount or 0
    await session.commit()

    logger.info("Tenant data removed", extra={"shop": shop, **counts})
    return counts
