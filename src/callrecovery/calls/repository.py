"""
Repository for call job database operations.

Every status change is a single-row compare-and-swap guarded by the expected
current status; callers inspect the return value to learn whether they won.
"""

from collections.abc import Collection, Iterable
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.calls.models import IN_FLIGHT_STATES, CallJob, CallJobStatus


class CallJobRepository:
    """Repository for call job rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    # ------------------------------------------------------------------ reads

    async def get(self, job_id: str) -> CallJob | None:
        stmt = (
            select(CallJob)
            .where(CallJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_shop(self, shop: str, job_id: str) -> CallJob | None:
        stmt = (
            select(CallJob)
            .where(CallJob.shop == shop, CallJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_provider_call_id(
        self,
        provider_call_id: str,
        shop: str | None = None,
    ) -> CallJob | None:
        """Get the job that recorded a provider call id.

        Args:
            provider_call_id: Identifier returned by the calling provider.
            shop: Restrict the lookup to one merchant when known.

        Returns:
            Most recent matching job or None.
        """
        stmt = select(CallJob).where(CallJob.provider_call_id == provider_call_id)
        if shop:
            stmt = stmt.where(CallJob.shop == shop)
        stmt = (
            stmt.order_by(CallJob.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def latest_for_checkout(self, shop: str, checkout_id: str) -> CallJob | None:
        stmt = (
            select(CallJob)
            .where(CallJob.shop == shop, CallJob.checkout_id == checkout_id)
            .order_by(CallJob.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def latest_provider_backed(self, shop: str, checkout_id: str) -> CallJob | None:
        """Most recent job for a checkout that actually reached the provider."""
        stmt = (
            select(CallJob)
            .where(
                CallJob.shop == shop,
                CallJob.checkout_id == checkout_id,
                CallJob.provider_call_id.is_not(None),
            )
            .order_by(CallJob.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def list_for_checkout(self, shop: str, checkout_id: str) -> Sequence[CallJob]:
        stmt = (
            select(CallJob)
            .where(CallJob.shop == shop, CallJob.checkout_id == checkout_id)
            .order_by(CallJob.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_due(
        self,
        upper_bound: datetime,
        limit: int,
        shop: str | None = None,
        exclude_ids: Collection[str] = (),
        exclude_shops: Collection[str] = (),
    ) -> Sequence[CallJob]:
        """List QUEUED jobs with ``scheduled_for <= upper_bound``, earliest first.

        Args:
            upper_bound: Latest scheduled time to include.
            limit: Maximum number of rows.
            shop: Restrict to one merchant when given.
            exclude_ids: Jobs already examined in this run.
            exclude_shops: Merchants whose jobs cannot be dispatched right now.

        Returns:
            Due jobs ordered by ``scheduled_for`` ascending.
        """
        stmt = select(CallJob).where(
            CallJob.status == CallJobStatus.QUEUED,
            CallJob.scheduled_for <= upper_bound,
        )
        if shop:
            stmt = stmt.where(CallJob.shop == shop)
        if exclude_ids:
            stmt = stmt.where(CallJob.id.not_in(list(exclude_ids)))
        if exclude_shops:
            stmt = stmt.where(CallJob.shop.not_in(list(exclude_shops)))
        stmt = stmt.order_by(CallJob.scheduled_for.asc()).limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_due(self, upper_bound: datetime) -> int:
        stmt = select(func.count(CallJob.id)).where(
            CallJob.status == CallJobStatus.QUEUED,
            CallJob.scheduled_for <= upper_bound,
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def get_attempts(self, job_id: str) -> int:
        stmt = select(CallJob.attempts).where(CallJob.id == job_id)
        result = await self._session.execute(stmt)
        attempts = result.scalar()
        return attempts if attempts is not None else 0

    # ----------------------------------------------------------------- writes

    async def create(
        self,
        shop: str,
        checkout_id: str,
        phone: str,
        scheduled_for: datetime,
    ) -> CallJob:
        """Insert a QUEUED job with zero attempts.

        Raises ``IntegrityError`` on flush when another in-flight job for the
        same checkout already exists.
        """
        job = CallJob(
            shop=shop,
            checkout_id=checkout_id,
            phone=phone,
            status=CallJobStatus.QUEUED,
            attempts=0,
            scheduled_for=scheduled_for,
        )
        self._session.add(job)
        await self._session.flush()
        return job

    async def claim(self, job_id: str) -> int | None:
        """Atomically move a job from QUEUED to CALLING.

        The update only matches while the job is still QUEUED and has no
        provider call id, so at most one concurrent caller succeeds.

        Args:
            job_id: Job to claim.

        Returns:
            The incremented attempt count if the claim succeeded, otherwise
            None (another worker took it or it is no longer eligible).
        """
        stmt = (
            update(CallJob)
            .where(
                CallJob.id == job_id,
                CallJob.status == CallJobStatus.QUEUED,
                CallJob.provider_call_id.is_(None),
            )
            .values(
                status=CallJobStatus.CALLING,
                attempts=CallJob.attempts + 1,
            )
            .returning(CallJob.attempts)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        if not row:
            return None
        return int(row[0])

    async def transition(
        self,
        job_id: str,
        expected: CallJobStatus | Iterable[CallJobStatus],
        new_status: CallJobStatus | None = None,
        **values: Any,
    ) -> bool:
        """Update a job only while its status is one of ``expected``.

        Args:
            job_id: Job to update.
            expected: Status or statuses the row must currently hold.
            new_status: Status to set, or None to keep the current one.
            **values: Additional column values.

        Returns:
            True when the row matched and was updated.
        """
        if isinstance(expected, CallJobStatus):
            expected = (expected,)
        if new_status is not None:
            values["status"] = new_status

        stmt = (
            update(CallJob)
            .where(CallJob.id == job_id, CallJob.status.in_(tuple(expected)))
            .values(**values)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def record_call_created(
        self,
        job_id: str,
        provider: str,
        provider_call_id: str,
    ) -> bool:
        """Store the provider call id on a claimed job; status stays CALLING."""
        return await self.transition(
            job_id,
            CallJobStatus.CALLING,
            provider=provider,
            provider_call_id=provider_call_id,
            outcome="CALL_CREATED",
        )

    async def cancel_in_flight(self, shop: str, checkout_id: str, outcome: str) -> int:
        """Bulk-cancel QUEUED/CALLING jobs for a checkout.

        Returns:
            Number of jobs canceled.
        """
        stmt = (
            update(CallJob)
            .where(
                CallJob.shop == shop,
                CallJob.checkout_id == checkout_id,
                CallJob.status.in_(IN_FLIGHT_STATES),
            )
            .values(status=CallJobStatus.CANCELED, outcome=outcome)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def attribute(
        self,
        job_id: str,
        order_id: str,
        amount: float | None,
        attributed_at: datetime,
    ) -> bool:
        """Attach an order to a job that has not been attributed yet."""
        stmt = (
            update(CallJob)
            .where(CallJob.id == job_id, CallJob.attributed_at.is_(None))
            .values(
                attributed_at=attributed_at,
                attributed_order_id=order_id,
                attributed_amount=amount,
            )
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0
