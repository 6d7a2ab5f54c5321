"""
Ordered strategies for finding the call job an event refers to.

Strategies run strongest first: job id, then checkout id, then provider call
id. The checkout-id strategy returns the most recent job for the checkout and
can pick the wrong one when several jobs exist for it.
"""

from collections.abc import Awaitable, Callable, Sequence

from callrecovery.calls.models import CallJob
from callrecovery.calls.repository import CallJobRepository
from callrecovery.shared.logging import get_logger
from callrecovery.telephony.events import Correlation

logger = get_logger(__name__)

CorrelationStrategy = Callable[[CallJobRepository, Correlation], Awaitable[CallJob | None]]


async def by_job_id(repo: CallJobRepository, correlation: Correlation) -> CallJob | None:
    if not (correlation.shop and correlation.call_job_id):
        return None
    return await repo.get_for_shop(correlation.shop, correlation.call_job_id)


async def by_checkout_id(repo: CallJobRepository, correlation: Correlation) -> CallJob | None:
    if not (correlation.shop and correlation.checkout_id):
        return None
    return await repo.latest_for_checkout(correlation.shop, correlation.checkout_id)


async def by_provider_call_id(repo: CallJobRepository, correlation: Correlation) -> CallJob | None:
    if not correlation.provider_call_id:
        return None
    return await repo.get_by_provider_call_id(correlation.provider_call_id, shop=correlation.shop)


DEFAULT_STRATEGIES: tuple[CorrelationStrategy, ...] = (
    by_job_id,
    by_checkout_id,
    by_provider_call_id,
)


async def resolve_job(
    repo: CallJobRepository,
    correlation: Correlation,
    strategies: Sequence[CorrelationStrategy] = DEFAULT_STRATEGIES,
) -> CallJob | None:
    """Return the first job matched by ``strategies``, or None."""
    for strategy in strategies:
        job = await strategy(repo, correlation)
        if job is not None:
            logger.debug(
                "Call job correlated",
                extra={"strategy": strategy.__name__, "call_job_id": job.id},
            )
            return job
    return None
