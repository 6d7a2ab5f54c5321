"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file so concurrent sessions really compete
for the same rows.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

import callrecovery.models  # noqa: F401
from callrecovery.calls.models import CallJob, CallJobStatus
from callrecovery.checkouts.models import Checkout, CheckoutStatus
from callrecovery.main import create_app
from callrecovery.shared.database import Base, get_db_session
from callrecovery.telephony import factory
from callrecovery.telephony.config import TelephonyConfig
from callrecovery.telephony.factory import get_call_provider
from callrecovery.telephony.mock_adapter import MockCallProvider
from callrecovery.telephony.webhooks.router import get_transcript_summarizer

SHOP = "demo-shop.myshopify.com"
WEBHOOK_SECRET = "hook-secret"
CRON_TOKEN = "cron-token"
RUN_CALLS_SECRET = "run-secret"
COMMERCE_SECRET = "shpss_test"


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("PROVIDER_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("CRON_TOKEN", CRON_TOKEN)
    monkeypatch.setenv("RUN_CALLS_SECRET", RUN_CALLS_SECRET)
    monkeypatch.setenv("COMMERCE_WEBHOOK_SECRET", COMMERCE_SECRET)
    monkeypatch.setenv("CALL_WINDOW_TIMEZONE", "UTC")
    monkeypatch.setenv("DISPATCH_GRACE_SECONDS", "0")
    monkeypatch.setenv("VAPI_PROVIDER_TYPE", "mock")
    monkeypatch.setenv("VAPI_ASSISTANT_ID", "asst_default")
    monkeypatch.setenv("VAPI_PHONE_NUMBER_ID", "pn_default")
    monkeypatch.delenv("VAPI_API_KEY", raising=False)
    monkeypatch.delenv("SUMMARIZER_ENABLED", raising=False)
    monkeypatch.delenv("SUMMARIZER_API_KEY", raising=False)

    factory.get_telephony_config.cache_clear()
    factory.get_call_provider.cache_clear()
    yield
    factory.get_telephony_config.cache_clear()
    factory.get_call_provider.cache_clear()


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'callrecovery.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def mock_provider() -> MockCallProvider:
    return MockCallProvider()


@pytest.fixture
def telephony_config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type="mock",
        assistant_id="asst_test",
        phone_number_id="pn_test",
    )


async def add_checkout(
    session: AsyncSession,
    checkout_id: str = "chk-1",
    *,
    shop: str = SHOP,
    status: CheckoutStatus = CheckoutStatus.ABANDONED,
    phone: str | None = "+15550001111",
    value: float = 120.0,
    abandoned_at: datetime | None = None,
    created_at: datetime | None = None,
    customer_name: str | None = "Ada Lovelace",
    token: str | None = None,
) -> Checkout:
    """Insert a checkout row and commit."""
    created = created_at or datetime.now(timezone.utc) - timedelta(hours=2)
    if status == CheckoutStatus.ABANDONED and abandoned_at is None:
        abandoned_at = created
    checkout = Checkout(
        shop=shop,
        checkout_id=checkout_id,
        token=token,
        phone=phone,
        value=value,
        currency="USD",
        status=status,
        abandoned_at=abandoned_at,
        customer_name=customer_name,
        items_json='[{"title": "Blue Mug", "quantity": 2}]',
        created_at=created,
    )
    session.add(checkout)
    await session.commit()
    return checkout


async def add_job(
    session: AsyncSession,
    checkout_id: str = "chk-1",
    *,
    shop: str = SHOP,
    status: CallJobStatus = CallJobStatus.QUEUED,
    attempts: int = 0,
    scheduled_for: datetime | None = None,
    created_at: datetime | None = None,
    provider_call_id: str | None = None,
    phone: str = "+15550001111",
) -> CallJob:
    """Insert a call job row and commit."""
    now = datetime.now(timezone.utc)
    job = CallJob(
        shop=shop,
        checkout_id=checkout_id,
        phone=phone,
        status=status,
        attempts=attempts,
        scheduled_for=scheduled_for or now - timedelta(minutes=1),
        created_at=created_at or now,
        provider_call_id=provider_call_id,
        provider="vapi" if provider_call_id else None,
    )
    session.add(job)
    await session.commit()
    return job


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession], mock_provider: MockCallProvider) -> FastAPI:
    """Application with the database and calling provider swapped for test doubles."""
    application = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db_session] = _session
    application.dependency_overrides[get_call_provider] = lambda: mock_provider
    application.dependency_overrides[get_transcript_summarizer] = lambda: None
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
