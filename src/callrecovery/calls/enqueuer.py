"""
Materialises call jobs for eligible abandoned checkouts.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import ColumnElement, and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.calls.models import IN_FLIGHT_STATES, CallJob, CallJobStatus
from callrecovery.calls.repository import CallJobRepository
from callrecovery.checkouts.models import Checkout, CheckoutStatus
from callrecovery.config import get_settings
from callrecovery.scheduling.policy import SchedulingPolicy
from callrecovery.scheduling.window import next_run_time
from callrecovery.shared.clock import call_window_zone, to_window_clock
from callrecovery.shared.database import utcnow
from callrecovery.shared.logging import get_logger

logger = get_logger(__name__)

_RETRYABLE_LAST_STATES = (CallJobStatus.FAILED, CallJobStatus.COMPLETED)


@dataclass(frozen=True)
class _Candidate:
    shop: str
    checkout_id: str
    phone: str | None


@dataclass
class EnqueueConfig:
    """Configuration for the job enqueuer."""

    batch_size: int = 100
    timezone: str = "UTC"

    @classmethod
    def from_settings(cls) -> "EnqueueConfig":
        settings = get_settings()
        return cls(
            batch_size=settings.enqueue_batch_size,
            timezone=settings.call_window_timezone,
        )


class JobEnqueuer:
    """Creates at most one in-flight call job per abandoned checkout.

    Each created job is committed on its own, so a duplicate raced in by a
    concurrent enqueuer only loses that one insert.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: EnqueueConfig | None = None,
    ) -> None:
        self._session = session
        self._config = config or EnqueueConfig.from_settings()
        self._jobs = CallJobRepository(session)

    def _job_history(self, policy: SchedulingPolicy, now: datetime) -> list[ColumnElement[bool]]:
        """Job-history filters for a checkout row; they must run before the batch LIMIT."""
        same_checkout = and_(CallJob.shop == Checkout.shop, CallJob.checkout_id == Checkout.checkout_id)

        in_flight = select(CallJob.id).where(same_checkout, CallJob.status.in_(IN_FLIGHT_STATES)).exists()
        attempts = select(func.count(CallJob.id)).where(same_checkout).scalar_subquery()
        conditions = [~in_flight, attempts < policy.max_attempts]

        if policy.retry_minutes > 0:
            newest_first = CallJob.created_at.desc()
            latest_status = (
                select(CallJob.status).where(same_checkout).order_by(newest_first).limit(1).scalar_subquery()
            )
            latest_created = (
                select(CallJob.created_at).where(same_checkout).order_by(newest_first).limit(1).scalar_subquery()
            )
            retry_cutoff = now - timedelta(minutes=policy.retry_minutes)
            conditions.append(
                or_(
                    latest_status.is_(None),
                    latest_status.not_in(_RETRYABLE_LAST_STATES),
                    latest_created <= retry_cutoff,
                )
            )
        return conditions

    async def _candidates(self, shop: str, policy: SchedulingPolicy, now: datetime) -> list[_Candidate]:
        # Delay runs from the checkout's own abandonment time.
        cutoff = now - timedelta(minutes=policy.delay_minutes)
        stmt = (
            select(Checkout.checkout_id, Checkout.phone)
            .where(
                Checkout.shop == shop,
                Checkout.status == CheckoutStatus.ABANDONED,
                Checkout.phone.is_not(None),
                func.trim(Checkout.phone) != "",
                Checkout.value >= policy.min_order_value,
                Checkout.abandoned_at <= cutoff,
                *self._job_history(policy, now),
            )
            .order_by(Checkout.abandoned_at.asc(), Checkout.checkout_id.asc())
            .limit(self._config.batch_size)
        )
        result = await self._session.execute(stmt)
        return [_Candidate(shop, row.checkout_id, row.phone) for row in result.all()]

    async def enqueue(
        self,
        shop: str,
        policy: SchedulingPolicy,
        now: datetime | None = None,
    ) -> int:
        """Create QUEUED jobs for the shop's eligible checkouts.

        Args:
            shop: Merchant identifier.
            policy: Scheduling rules for this run.
            now: Current UTC time; defaults to the wall clock.

        Returns:
            Number of jobs created.
        """
        if not policy.enabled:
            logger.debug("Recovery disabled, skipping enqueue", extra={"shop": shop})
            return 0

        now = now or utcnow()
        candidates = await self._candidates(shop, policy, now)

        # The lead is zero: the delay was already consumed by the candidate filter.
        scheduled_for = next_run_time(
            to_window_clock(now, call_window_zone(self._config.timezone)),
            policy.call_window_start,
            policy.call_window_end,
            0,
        ).astimezone(timezone.utc)

        enqueued = 0
        for checkout in candidates:
            try:
                job = await self._jobs.create(
                    shop=shop,
                    checkout_id=checkout.checkout_id,
                    phone=checkout.phone.strip(),
                    scheduled_for=scheduled_for,
                )
                await self._session.commit()
            except IntegrityError:
                await self._session.rollback()
                logger.warning(
                    "In-flight job already exists for checkout, skipping",
                    extra={"shop": shop, "checkout_id": checkout.checkout_id},
                )
                continue

            enqueued += 1
            logger.info(
                "Call job enqueued",
                extra={
                    "shop": shop,
                    "checkout_id": checkout.checkout_id,
                    "call_job_id": job.id,
                    "scheduled_for": scheduled_for.isoformat(),
                },
            )

        return enqueued
