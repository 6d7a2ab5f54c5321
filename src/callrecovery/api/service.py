"""
One recovery cycle: classify, enqueue and dispatch.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.calls.dispatcher import DispatchResult, JobDispatcher
from callrecovery.calls.enqueuer import JobEnqueuer
from callrecovery.calls.repository import CallJobRepository
from callrecovery.checkouts.classifier import mark_abandoned
from callrecovery.config import get_settings
from callrecovery.merchants.repository import MerchantSettingsRepository
from callrecovery.scheduling.policy import SchedulingPolicy
from callrecovery.shared.database import utcnow
from callrecovery.shared.logging import get_logger
from callrecovery.telephony.interface import CallProvider

logger = get_logger(__name__)


@dataclass
class CycleSummary:
    """Counts reported by the periodic trigger."""

    shops: int = 0
    marked_total: int = 0
    enqueued_total: int = 0
    queued_due_before: int = 0
    queued_due_after: int = 0
    dispatch: DispatchResult = field(default_factory=DispatchResult)
    server_now: str = ""

    def as_dict(self) -> dict:
        data = asdict(self)
        data["ok"] = True
        return data


async def run_recovery_cycle(
    session: AsyncSession,
    provider: CallProvider | None = None,
    dispatch_limit: int | None = None,
    now: datetime | None = None,
) -> CycleSummary:
    """Classify and enqueue for every merchant, then dispatch due jobs.

    A merchant whose classification or enqueue step fails is logged and
    skipped; the other merchants and the dispatch step still run.

    Args:
        session: Async database session.
        provider: Calling provider override.
        dispatch_limit: Maximum jobs dispatched; defaults to settings.
        now: Current UTC time; defaults to the wall clock.

    Returns:
        Cycle counters.
    """
    now = now or utcnow()
    settings = get_settings()
    jobs = CallJobRepository(session)
    merchants = MerchantSettingsRepository(session)
    enqueuer = JobEnqueuer(session)

    summary = CycleSummary(server_now=now.isoformat())
    summary.queued_due_before = await jobs.count_due(now)

    shops = await merchants.list_shops()
    summary.shops = len(shops)
    for shop in shops:
        try:
            row = await merchants.ensure(shop)
            policy = SchedulingPolicy.from_settings(row)
            summary.marked_total += await mark_abandoned(session, shop, policy.delay_minutes, now=now)
            await session.commit()
            summary.enqueued_total += await enqueuer.enqueue(shop, policy, now=now)
        except Exception:
            await session.rollback()
            logger.exception("Recovery cycle failed for shop", extra={"shop": shop})

    summary.queued_due_after = await jobs.count_due(now)

    dispatcher = JobDispatcher(session, provider=provider)
    summary.dispatch = await dispatcher.run_due(dispatch_limit or settings.dispatch_limit, now=now)

    logger.info(
        "Recovery cycle completed",
        extra={
            "shops": summary.shops,
            "marked_total": summary.marked_total,
            "enqueued_total": summary.enqueued_total,
            **summary.dispatch.as_dict(),
        },
    )
    return summary
