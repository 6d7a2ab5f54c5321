"""
Repository for checkout database operations.
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.checkouts.ingest import CheckoutPayload
from callrecovery.checkouts.models import CLOSED_CHECKOUT_STATES, Checkout, CheckoutStatus
from callrecovery.shared.database import utcnow


class CheckoutRepository:
    """Repository for checkout rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get(self, shop: str, checkout_id: str) -> Checkout | None:
        stmt = select(Checkout).where(
            Checkout.shop == shop,
            Checkout.checkout_id == checkout_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_token(self, shop: str, token: str) -> Checkout | None:
        stmt = select(Checkout).where(Checkout.shop == shop, Checkout.token == token)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def upsert(
        self,
        shop: str,
        payload: CheckoutPayload,
        status: CheckoutStatus = CheckoutStatus.OPEN,
        abandoned_at: datetime | None = None,
    ) -> Checkout:
        """Insert or refresh the row for ``(shop, payload.checkout_id)``.

        Contact, value and cart fields are always refreshed. A CONVERTED or
        RECOVERED checkout keeps its status; otherwise ``status`` is applied,
        and ``abandoned_at`` is stored only together with ABANDONED.

        Args:
            shop: Merchant identifier.
            payload: Normalised checkout fields.
            status: Lifecycle state reported by the caller.
            abandoned_at: Platform abandonment time when ``status`` is ABANDONED.

        Returns:
            The persisted checkout.
        """
        if status == CheckoutStatus.ABANDONED:
            abandoned_at = abandoned_at or utcnow()
        else:
            abandoned_at = None

        checkout = await self.get(shop, payload.checkout_id)
        if checkout is None:
            checkout = Checkout(shop=shop, checkout_id=payload.checkout_id)
            self._session.add(checkout)

        checkout.token = payload.token
        checkout.email = payload.email
        checkout.phone = payload.phone
        checkout.value = payload.value
        checkout.currency = payload.currency
        checkout.customer_name = payload.customer_name
        checkout.items_json = payload.items_json
        checkout.raw = payload.raw

        if checkout.status not in CLOSED_CHECKOUT_STATES:
            checkout.status = status
            checkout.abandoned_at = abandoned_at

        await self._session.flush()
        return checkout

    async def mark_converted(self, shop: str, checkout_id: str) -> int:
        """Close a checkout that converted without an attributable call."""
        stmt = (
            update(Checkout)
            .where(Checkout.shop == shop, Checkout.checkout_id == checkout_id)
            .values(status=CheckoutStatus.CONVERTED, abandoned_at=None, updated_at=utcnow())
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def mark_recovered(
        self,
        shop: str,
        checkout_id: str,
        order_id: str,
        amount: float | None,
        recovered_at: datetime,
    ) -> int:
        """Close a checkout whose order is attributed to a call."""
        stmt = (
            update(Checkout)
            .where(Checkout.shop == shop, Checkout.checkout_id == checkout_id)
            .values(
                status=CheckoutStatus.RECOVERED,
                abandoned_at=None,
                recovered_at=recovered_at,
                recovered_order_id=order_id,
                recovered_amount=amount,
                updated_at=utcnow(),
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0
