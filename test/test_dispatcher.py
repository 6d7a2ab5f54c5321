"""
Tests for JobDispatcher: exclusive claims, provider invocation and the
retry/fail policy.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callrecovery.calls.dispatcher import JobDispatcher
from callrecovery.calls.models import CallJobStatus
from callrecovery.calls.repository import CallJobRepository
from callrecovery.merchants.repository import MerchantSettingsRepository
from callrecovery.telephony.config import TelephonyConfig
from callrecovery.telephony.mock_adapter import MockCallProvider
from conftest import SHOP, add_checkout, add_job


async def reload(session: AsyncSession, job_id: str):
    return await CallJobRepository(session).get(job_id)


async def configure(session: AsyncSession, **changes) -> None:
    await MerchantSettingsRepository(session).update(SHOP, **changes)
    await session.commit()


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_succeeds_once(self, db_session: AsyncSession) -> None:
        job = await add_job(db_session)
        repo = CallJobRepository(db_session)

        assert await repo.claim(job.id) == 1
        await db_session.commit()
        assert await repo.claim(job.id) is None

        claimed = await reload(db_session, job.id)
        assert claimed.status == CallJobStatus.CALLING
        assert claimed.attempts == 1

    @pytest.mark.asyncio
    async def test_claim_requires_empty_provider_call_id(self, db_session: AsyncSession) -> None:
        job = await add_job(db_session, provider_call_id="call_123")
        assert await CallJobRepository(db_session).claim(job.id) is None

    @pytest.mark.asyncio
    async def test_concurrent_dispatchers_start_one_call(
        self,
        db_session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        telephony_config: TelephonyConfig,
    ) -> None:
        await add_checkout(db_session)
        await configure(db_session)
        job = await add_job(db_session)
        provider = MockCallProvider()

        async def run_once() -> int:
            async with session_factory() as session:
                result = await JobDispatcher(
                    session, provider=provider, telephony_config=telephony_config, grace_seconds=0
                ).run_due(limit=10)
                return result.started

        started = await asyncio.gather(run_once(), run_once(), run_once())

        assert sum(started) == 1
        assert len(provider.requests) == 1
        job = await reload(db_session, job.id)
        assert job.status == CallJobStatus.CALLING
        assert job.attempts == 1
        assert job.provider_call_id == "MOCK_CALL_000001"


class TestRunDue:
    @pytest.mark.asyncio
    async def test_started_call_records_provider_call_id(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        telephony_config: TelephonyConfig,
    ) -> None:
        await add_checkout(db_session)
        await configure(db_session, merchant_prompt="Offer free shipping.")
        job = await add_job(db_session)

        result = await JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=0).run_due(10)

        assert result.as_dict() == {"processed": 1, "started": 1, "failed": 0, "skipped": 0, "retried": 0}
        job = await reload(db_session, job.id)
        assert job.status == CallJobStatus.CALLING
        assert job.provider == "mock"
        assert job.provider_call_id == "MOCK_CALL_000001"
        assert job.outcome == "CALL_CREATED"

        [request] = mock_provider.requests
        assert request.phone == "+15550001111"
        assert request.assistant_id == "asst_test"
        assert request.phone_number_id == "pn_test"
        assert request.customer_name == "Ada Lovelace"
        assert request.metadata == {"shop": SHOP, "callJobId": job.id, "checkoutId": "chk-1"}
        assert "Blue Mug x2" in request.system_prompt
        assert "Offer free shipping." in request.system_prompt

    @pytest.mark.asyncio
    async def test_merchant_identifiers_override_defaults(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        telephony_config: TelephonyConfig,
    ) -> None:
        await configure(db_session, provider_assistant_id="asst_shop", provider_phone_number_id="pn_shop")
        await add_job(db_session)

        await JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=0).run_due(10)

        [request] = mock_provider.requests
        assert request.assistant_id == "asst_shop"
        assert request.phone_number_id == "pn_shop"

    @pytest.mark.asyncio
    async def test_future_jobs_wait_and_grace_window_applies(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        telephony_config: TelephonyConfig,
        now: datetime,
    ) -> None:
        await add_job(db_session, scheduled_for=now + timedelta(seconds=60))

        strict = JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=0)
        assert (await strict.run_due(10, now=now)).processed == 0

        lenient = JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=120)
        assert (await lenient.run_due(10, now=now)).started == 1

    @pytest.mark.asyncio
    async def test_earliest_due_first_and_limit(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        telephony_config: TelephonyConfig,
        now: datetime,
    ) -> None:
        late = await add_job(db_session, "chk-late", scheduled_for=now - timedelta(minutes=1))
        early = await add_job(db_session, "chk-early", scheduled_for=now - timedelta(minutes=10))

        result = await JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=0).run_due(1, now=now)

        assert result.processed == 1
        assert (await reload(db_session, early.id)).status == CallJobStatus.CALLING
        assert (await reload(db_session, late.id)).status == CallJobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_shop_filter(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        telephony_config: TelephonyConfig,
    ) -> None:
        await add_job(db_session, shop="other.myshopify.com")

        result = await JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=0).run_due(10, shop=SHOP)
        assert result.processed == 0


class TestFailurePolicy:
    @pytest.mark.asyncio
    async def test_retry_then_fail(
        self,
        db_session: AsyncSession,
        telephony_config: TelephonyConfig,
        now: datetime,
    ) -> None:
        await configure(db_session, max_attempts=2, retry_minutes=15)
        job = await add_job(db_session)
        job_id = job.id
        provider = MockCallProvider(fail_with="number unreachable")

        first = await JobDispatcher(db_session, provider, telephony_config, grace_seconds=0).run_due(10, now=now)

        assert first.retried == 1
        retried = await reload(db_session, job_id)
        assert retried.status == CallJobStatus.QUEUED
        assert retried.attempts == 1
        assert retried.outcome == "RETRY_SCHEDULED in 15m"
        assert retried.scheduled_for >= now + timedelta(minutes=15)

        # Not due again until the retry delay has passed.
        early = await JobDispatcher(db_session, provider, telephony_config, grace_seconds=0).run_due(10, now=now)
        assert early.processed == 0

        later = now + timedelta(minutes=16)
        second = await JobDispatcher(db_session, provider, telephony_config, grace_seconds=0).run_due(10, now=later)

        assert second.failed == 1
        failed = await reload(db_session, job_id)
        assert failed.status == CallJobStatus.FAILED
        assert failed.attempts == 2
        assert failed.outcome == "ERROR: number unreachable"

        final = await JobDispatcher(db_session, provider, telephony_config, grace_seconds=0).run_due(
            10, now=later + timedelta(days=1)
        )
        assert final.processed == 0
        assert len(provider.requests) == 2

    @pytest.mark.asyncio
    async def test_single_attempt_fails_immediately(
        self,
        db_session: AsyncSession,
        telephony_config: TelephonyConfig,
    ) -> None:
        await configure(db_session, max_attempts=1)
        job = await add_job(db_session)
        job_id = job.id
        provider = MockCallProvider(fail_with="boom")

        result = await JobDispatcher(db_session, provider, telephony_config, grace_seconds=0).run_due(10)

        assert result.failed == 1
        assert (await reload(db_session, job_id)).status == CallJobStatus.FAILED

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_run(
        self,
        db_session: AsyncSession,
        telephony_config: TelephonyConfig,
        now: datetime,
    ) -> None:
        await configure(db_session, max_attempts=1)
        await add_job(db_session, "chk-a", scheduled_for=now - timedelta(minutes=2))
        await add_job(db_session, "chk-b", scheduled_for=now - timedelta(minutes=1))

        class FlakyProvider(MockCallProvider):
            def create_call_sync(self, request):
                if request.metadata["checkoutId"] == "chk-a":
                    self.requests.append(request)
                    raise RuntimeError("socket closed")
                return super().create_call_sync(request)

        result = await JobDispatcher(db_session, FlakyProvider(), telephony_config, grace_seconds=0).run_due(
            10, now=now
        )

        assert result.as_dict() == {"processed": 2, "started": 1, "failed": 1, "skipped": 0, "retried": 0}

    @pytest.mark.asyncio
    async def test_missing_configuration_keeps_job_queued(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
    ) -> None:
        job = await add_job(db_session)
        unconfigured = TelephonyConfig(provider_type="mock", assistant_id="", phone_number_id="")

        result = await JobDispatcher(db_session, mock_provider, unconfigured, grace_seconds=0).run_due(10)

        assert result.skipped == 1
        assert mock_provider.requests == []
        job = await reload(db_session, job.id)
        assert job.status == CallJobStatus.QUEUED
        assert job.attempts == 0
        assert job.outcome.startswith("CONFIG_ERROR: ")
        assert "assistant id" in job.outcome


class TestPartialFailureIsolation:
    @pytest.mark.asyncio
    async def test_unconfigured_merchant_does_not_starve_others(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        now: datetime,
    ) -> None:
        # Only SHOP has provider ids; there are no process-wide fallbacks.
        await configure(db_session, provider_assistant_id="asst_shop", provider_phone_number_id="pn_shop")
        bare_shop = "bare.myshopify.com"
        bare_jobs = [
            await add_job(db_session, f"chk-bare-{i}", shop=bare_shop, scheduled_for=now - timedelta(hours=1))
            for i in range(3)
        ]
        configured_job = await add_job(db_session, scheduled_for=now - timedelta(minutes=1))
        no_defaults = TelephonyConfig(provider_type="mock", assistant_id="", phone_number_id="")

        for _ in range(2):
            await JobDispatcher(db_session, mock_provider, no_defaults, grace_seconds=0).run_due(3, now=now)

        assert [r.metadata["callJobId"] for r in mock_provider.requests] == [configured_job.id]
        for job in bare_jobs:
            assert (await reload(db_session, job.id)).status == CallJobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_config_skips_do_not_use_up_the_limit(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        now: datetime,
    ) -> None:
        await configure(db_session, provider_assistant_id="asst_shop", provider_phone_number_id="pn_shop")
        await add_job(db_session, "chk-bare", shop="bare.myshopify.com", scheduled_for=now - timedelta(hours=1))
        await add_job(db_session, "chk-1", scheduled_for=now - timedelta(minutes=2))
        await add_job(db_session, "chk-2", scheduled_for=now - timedelta(minutes=1))
        no_defaults = TelephonyConfig(provider_type="mock", assistant_id="", phone_number_id="")

        result = await JobDispatcher(db_session, mock_provider, no_defaults, grace_seconds=0).run_due(2, now=now)

        assert result.as_dict() == {"processed": 3, "started": 2, "failed": 0, "skipped": 1, "retried": 0}

    @pytest.mark.asyncio
    async def test_settings_load_error_is_isolated(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        telephony_config: TelephonyConfig,
        now: datetime,
    ) -> None:
        broken_shop = "broken.myshopify.com"
        broken = await add_job(db_session, "chk-broken", shop=broken_shop, scheduled_for=now - timedelta(hours=1))
        healthy = await add_job(db_session, scheduled_for=now - timedelta(minutes=1))
        dispatcher = JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=0)
        original_ensure = dispatcher._merchants.ensure

        async def flaky_ensure(shop: str):
            if shop == broken_shop:
                raise OperationalError("SELECT merchant_settings", {}, Exception("connection reset"))
            return await original_ensure(shop)

        dispatcher._merchants.ensure = flaky_ensure

        result = await dispatcher.run_due(1, now=now)

        assert result.started == 1
        assert result.skipped == 1
        assert (await reload(db_session, healthy.id)).status == CallJobStatus.CALLING
        assert (await reload(db_session, broken.id)).status == CallJobStatus.QUEUED

    @pytest.mark.asyncio
    async def test_storing_call_id_failure_does_not_call_twice(
        self,
        db_session: AsyncSession,
        mock_provider: MockCallProvider,
        telephony_config: TelephonyConfig,
    ) -> None:
        await configure(db_session)
        job = await add_job(db_session)
        job_id = job.id
        dispatcher = JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=0)

        async def failing_record(*args, **kwargs):
            raise OperationalError("UPDATE call_jobs", {}, Exception("disk I/O error"))

        dispatcher._jobs.record_call_created = failing_record

        result = await dispatcher.run_due(10)

        assert result.started == 1
        assert result.retried == 0
        stored = await reload(db_session, job_id)
        assert stored.status == CallJobStatus.CALLING
        assert stored.attempts == 1

        await JobDispatcher(db_session, mock_provider, telephony_config, grace_seconds=0).run_due(10)
        assert len(mock_provider.requests) == 1
