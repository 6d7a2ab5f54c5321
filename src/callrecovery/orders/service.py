"""
Order-created handling.

An order closes its checkout: in-flight call jobs are canceled, and when a
call actually reached the customer the order is attributed to the most
recent such call.
"""

import json
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.calls.repository import CallJobRepository
from callrecovery.checkouts.ingest import to_float
from callrecovery.checkouts.repository import CheckoutRepository
from callrecovery.orders.models import Order
from callrecovery.shared.database import utcnow
from callrecovery.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderPayload:
    """Fields extracted from a platform order body."""

    order_id: str
    checkout_id: str | None
    checkout_token: str | None
    total: float | None
    currency: str
    financial_status: str | None
    raw: str

    @classmethod
    def from_platform(cls, payload: dict[str, Any]) -> "OrderPayload | None":
        order_id = str(payload["id"]) if payload.get("id") is not None else ""
        if not order_id:
            return None
        total_set = ((payload.get("total_price_set") or {}).get("shop_money") or {})
        total = to_float(
            payload.get("total_price")
            or payload.get("totalPrice")
            or payload.get("current_total_price")
            or total_set.get("amount")
        )
        return cls(
            order_id=order_id,
            checkout_id=str(payload["checkout_id"]) if payload.get("checkout_id") is not None else None,
            checkout_token=str(payload["checkout_token"]) if payload.get("checkout_token") else None,
            total=total,
            currency=str(payload.get("currency") or payload.get("currency_code") or "USD").upper(),
            financial_status=str(payload["financial_status"]) if payload.get("financial_status") else None,
            raw=json.dumps(payload, default=str),
        )


@dataclass(frozen=True)
class OrderHandlingResult:
    """What an order event changed."""

    order_id: str
    checkout_id: str | None = None
    canceled_jobs: int = 0
    attributed_job_id: str | None = None

    @property
    def recovered(self) -> bool:
        return self.attributed_job_id is not None


async def _upsert_order(session: AsyncSession, shop: str, order: OrderPayload) -> None:
    stmt = select(Order).where(Order.shop == shop, Order.order_id == order.order_id)
    row = (await session.execute(stmt)).scalar_one_or_none()
    if row is None:
        row = Order(shop=shop, order_id=order.order_id)
        session.add(row)
    row.checkout_id = order.checkout_id
    row.checkout_token = order.checkout_token
    row.total = order.total
    row.currency = order.currency
    row.financial_status = order.financial_status
    row.raw = order.raw
    await session.flush()


async def handle_order_created(
    session: AsyncSession,
    shop: str,
    order: OrderPayload,
) -> OrderHandlingResult:
    """Record an order and close the checkout it came from.

    Args:
        session: Async database session; committed on success.
        shop: Merchant identifier.
        order: Normalised order fields.

    Returns:
        Summary of the cancellation and attribution performed.
    """
    await _upsert_order(session, shop, order)

    checkouts = CheckoutRepository(session)
    checkout_id = order.checkout_id
    if checkout_id is None and order.checkout_token:
        checkout = await checkouts.get_by_token(shop, order.checkout_token)
        checkout_id = checkout.checkout_id if checkout else None

    if checkout_id is None:
        await session.commit()
        logger.info("Order has no checkout reference", extra={"shop": shop, "order_id": order.order_id})
        return OrderHandlingResult(order_id=order.order_id)

    jobs = CallJobRepository(session)
    canceled = await jobs.cancel_in_flight(shop, checkout_id, outcome=f"CANCELED: order {order.order_id}")

    attributed_job_id = None
    now = utcnow()
    candidate = await jobs.latest_provider_backed(shop, checkout_id)
    if candidate is not None and candidate.attributed_at is None:
        if await jobs.attribute(candidate.id, order.order_id, order.total, now):
            attributed_job_id = candidate.id

    if attributed_job_id is not None:
        await checkouts.mark_recovered(shop, checkout_id, order.order_id, order.total, now)
    else:
        await checkouts.mark_converted(shop, checkout_id)

    await session.commit()

    logger.info(
        "Order processed",
        extra={
            "shop": shop,
            "order_id": order.order_id,
            "checkout_id": checkout_id,
            "canceled_jobs": canceled,
            "attributed_job_id": attributed_job_id,
        },
    )
    return OrderHandlingResult(
        order_id=order.order_id,
        checkout_id=checkout_id,
        canceled_jobs=canceled,
        attributed_job_id=attributed_job_id,
    )
