"""
Repository for merchant settings.
"""

from sqlalchemy import select, union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.checkouts.models import Checkout
from callrecovery.merchants.models import DEFAULT_SETTINGS, MerchantSettings
from callrecovery.shared.logging import get_logger

logger = get_logger(__name__)


class MerchantSettingsRepository:
    """Repository for merchant settings rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, shop: str) -> MerchantSettings | None:
        stmt = select(MerchantSettings).where(MerchantSettings.shop == shop)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure(self, shop: str) -> MerchantSettings:
        """Return the settings row for a shop, creating it with defaults.

        Args:
            shop: Merchant identifier.

        Returns:
            Existing or freshly inserted settings row.
        """
        existing = await self.get(shop)
        if existing is not None:
            return existing

        row = MerchantSettings(shop=shop, **DEFAULT_SETTINGS)
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            # Another request inserted the row first.
            logger.info("Settings row created concurrently", extra={"shop": shop})
            existing = await self.get(shop)
            if existing is None:
                raise
            return existing

        logger.info("Created default merchant settings", extra={"shop": shop})
        return row

    async def update(self, shop: str, **changes: object) -> MerchantSettings:
        """Apply field changes to a shop's settings row.

        Args:
            shop: Merchant identifier.
            **changes: Column values to set; unknown names raise ``AttributeError``.

        Returns:
            Updated settings row.
        """
        row = await self.ensure(shop)
        for name, value in changes.items():
            if not hasattr(MerchantSettings, name) or name in {"id", "shop"}:
                raise AttributeError(f"Unknown settings field: {name}")
            setattr(row, name, value)
        await self._session.flush()
        return row

    async def list_shops(self) -> list[str]:
        """List every shop that has settings or checkouts."""
        stmt = union(
            select(MerchantSettings.shop),
            select(Checkout.shop),
        )
        result = await self._session.execute(stmt)
        return sorted(row[0] for row in result.all())
