"""
Claims due call jobs and hands them to the calling provider.

Each job goes through: configuration check, claim (QUEUED -> CALLING, committed
before any network I/O), create-call, then either the provider call id is
recorded or the retry/fail policy is applied. One job's failure never aborts
the rest of the run.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.calls.models import CallJobStatus
from callrecovery.calls.prompts import BASE_PREPROMPT, build_dynamic_prompt
from callrecovery.calls.repository import CallJobRepository
from callrecovery.checkouts.ingest import build_cart_preview
from callrecovery.checkouts.repository import CheckoutRepository
from callrecovery.config import get_settings
from callrecovery.merchants.repository import MerchantSettingsRepository
from callrecovery.scheduling.policy import SchedulingPolicy
from callrecovery.shared.database import utcnow
from callrecovery.shared.exceptions import ConfigurationError
from callrecovery.shared.logging import get_logger
from callrecovery.telephony.config import TelephonyConfig
from callrecovery.telephony.factory import get_call_provider, get_telephony_config
from callrecovery.telephony.interface import CallProvider, CreateCallRequest

logger = get_logger(__name__)

MAX_OUTCOME_LENGTH = 2000


@dataclass
class DispatchResult:
    """Counters returned after a dispatcher run."""

    processed: int = 0
    started: int = 0
    failed: int = 0
    skipped: int = 0
    retried: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "started": self.started,
            "failed": self.failed,
            "skipped": self.skipped,
            "retried": self.retried,
        }


@dataclass(frozen=True)
class _DueJob:
    id: str
    shop: str
    checkout_id: str
    phone: str


@dataclass(frozen=True)
class _MerchantCallProfile:
    policy: SchedulingPolicy
    currency: str
    assistant_id: str
    phone_number_id: str
    merchant_prompt: str


class JobDispatcher:
    """Runs due QUEUED jobs through the calling provider."""

    def __init__(
        self,
        session: AsyncSession,
        provider: CallProvider | None = None,
        telephony_config: TelephonyConfig | None = None,
        grace_seconds: int | None = None,
    ) -> None:
        self._session = session
        self._provider = provider or get_call_provider()
        self._telephony_config = telephony_config or get_telephony_config()
        self._grace = timedelta(
            seconds=get_settings().dispatch_grace_seconds if grace_seconds is None else grace_seconds
        )
        self._jobs = CallJobRepository(session)
        self._checkouts = CheckoutRepository(session)
        self._merchants = MerchantSettingsRepository(session)
        self._profiles: dict[str, _MerchantCallProfile] = {}
        self._blocked_shops: set[str] = set()

    async def run_due(
        self,
        limit: int,
        shop: str | None = None,
        now: datetime | None = None,
    ) -> DispatchResult:
        """Attempt up to ``limit`` due jobs, earliest first.

        Jobs of a merchant that cannot be dispatched (missing provider settings
        or unreadable settings row) are skipped without using up ``limit``, and
        the rest of that merchant's jobs are left out of the run.

        Args:
            limit: Maximum number of jobs attempted in this run.
            shop: Restrict to one merchant when given.
            now: Current UTC time; defaults to the wall clock.

        Returns:
            Counters for the run.
        """
        now = now or utcnow()
        upper_bound = now + self._grace
        result = DispatchResult()
        seen: set[str] = set()
        remaining = limit
        self._blocked_shops = set()

        while remaining > 0:
            rows = await self._jobs.list_due(
                upper_bound,
                remaining,
                shop=shop,
                exclude_ids=seen,
                exclude_shops=self._blocked_shops,
            )
            due = [_DueJob(r.id, r.shop, r.checkout_id, r.phone) for r in rows]
            await self._session.commit()
            if not due:
                break

            for job in due:
                seen.add(job.id)
                result.processed += 1
                try:
                    outcome = await self._process(job)
                except Exception:
                    await self._session.rollback()
                    logger.exception("Call job processing failed", extra={"shop": job.shop, "call_job_id": job.id})
                    outcome = "skipped"
                setattr(result, outcome, getattr(result, outcome) + 1)
                if job.shop not in self._blocked_shops:
                    remaining -= 1

        logger.info("Dispatcher run completed", extra={"shop": shop, **result.as_dict()})
        return result

    async def _profile(self, shop: str) -> _MerchantCallProfile:
        profile = self._profiles.get(shop)
        if profile is None:
            row = await self._merchants.ensure(shop)
            profile = _MerchantCallProfile(
                policy=SchedulingPolicy.from_settings(row),
                currency=row.currency or "USD",
                assistant_id=row.provider_assistant_id or self._telephony_config.assistant_id,
                phone_number_id=row.provider_phone_number_id or self._telephony_config.phone_number_id,
                merchant_prompt=row.merchant_prompt or "",
            )
            await self._session.commit()
            self._profiles[shop] = profile
        return profile

    def _check_configuration(self, profile: _MerchantCallProfile) -> None:
        missing = []
        if not self._provider.is_configured():
            missing.append("api key")
        if not profile.assistant_id:
            missing.append("assistant id")
        if not profile.phone_number_id:
            missing.append("phone number id")
        if missing:
            raise ConfigurationError(
                f"Missing calling provider settings: {', '.join(missing)}",
                details={"missing": missing},
            )

    async def _process(self, job: _DueJob) -> str:
        extra = {"shop": job.shop, "call_job_id": job.id, "checkout_id": job.checkout_id}

        try:
            profile = await self._profile(job.shop)
        except Exception:
            await self._session.rollback()
            self._blocked_shops.add(job.shop)
            logger.exception("Merchant settings unavailable, call job not dispatched", extra=extra)
            return "skipped"

        try:
            self._check_configuration(profile)
        except ConfigurationError as e:
            # Left QUEUED and no attempt consumed; the next run picks it up once fixed.
            self._blocked_shops.add(job.shop)
            await self._jobs.transition(
                job.id,
                CallJobStatus.QUEUED,
                outcome=f"CONFIG_ERROR: {e.message}"[:MAX_OUTCOME_LENGTH],
            )
            await self._session.commit()
            logger.warning("Call job not dispatched, provider not configured", extra={**extra, **e.details})
            return "skipped"

        attempt = await self._jobs.claim(job.id)
        # Release the row lock before talking to the provider.
        await self._session.commit()
        if attempt is None:
            logger.info("Call job already claimed elsewhere", extra=extra)
            return "skipped"

        logger.info("Call job claimed", extra={**extra, "attempt": attempt})

        try:
            request = await self._build_request(job, profile)
            created = await self._provider.create_call(request)
        except Exception as e:
            await self._session.rollback()
            logger.exception("Failed to create provider call", extra={**extra, "attempt": attempt})
            return await self._apply_failure_policy(job, profile.policy, e)

        extra["provider_call_id"] = created.provider_call_id
        try:
            recorded = await self._jobs.record_call_created(
                job.id,
                self._provider.name,
                created.provider_call_id,
            )
            await self._session.commit()
        except Exception:
            # The call exists, so the job must stay CALLING; the id arrives with the provider's events.
            await self._session.rollback()
            logger.exception("Provider call created but its id could not be stored", extra=extra)
            return "started"

        if not recorded:
            logger.warning("Call created but job left CALLING before the call id was stored", extra=extra)
        else:
            logger.info("Provider call created", extra=extra)
        return "started"

    async def _build_request(self, job: _DueJob, profile: _MerchantCallProfile) -> CreateCallRequest:
        checkout = await self._checkouts.get(job.shop, job.checkout_id)
        customer_name = checkout.customer_name if checkout else None
        prompt = build_dynamic_prompt(
            base=BASE_PREPROMPT,
            merchant_prompt=profile.merchant_prompt,
            shop=job.shop,
            customer_name=customer_name,
            cart_preview=build_cart_preview(checkout.items_json if checkout else None),
            currency=(checkout.currency if checkout else None) or profile.currency,
            value=checkout.value if checkout else 0.0,
        )
        return CreateCallRequest(
            phone=job.phone,
            assistant_id=profile.assistant_id,
            phone_number_id=profile.phone_number_id,
            system_prompt=prompt,
            customer_name=customer_name,
            metadata={"shop": job.shop, "callJobId": job.id, "checkoutId": job.checkout_id},
        )

    async def _apply_failure_policy(
        self,
        job: _DueJob,
        policy: SchedulingPolicy,
        error: Exception,
    ) -> str:
        extra = {"shop": job.shop, "call_job_id": job.id}
        attempts = await self._jobs.get_attempts(job.id)
        message = getattr(error, "message", None) or str(error) or type(error).__name__

        if attempts >= policy.max_attempts:
            moved = await self._jobs.transition(
                job.id,
                CallJobStatus.CALLING,
                CallJobStatus.FAILED,
                outcome=f"ERROR: {message}"[:MAX_OUTCOME_LENGTH],
            )
            await self._session.commit()
            logger.warning(
                "Call job failed permanently",
                extra={**extra, "attempts": attempts, "applied": moved},
            )
            return "failed"

        retry_at = utcnow() + timedelta(minutes=policy.retry_minutes)
        moved = await self._jobs.transition(
            job.id,
            CallJobStatus.CALLING,
            CallJobStatus.QUEUED,
            scheduled_for=retry_at,
            outcome=f"RETRY_SCHEDULED in {policy.retry_minutes}m",
        )
        await self._session.commit()
        logger.info(
            "Call job rescheduled",
            extra={**extra, "attempts": attempts, "scheduled_for": retry_at.isoformat(), "applied": moved},
        )
        return "retried"
