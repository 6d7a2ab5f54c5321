"""
Trigger endpoints for the periodic scheduler and manual dispatch.
"""

import hmac
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.api.service import run_recovery_cycle
from callrecovery.calls.dispatcher import JobDispatcher
from callrecovery.config import get_settings
from callrecovery.shared.database import get_db_session
from callrecovery.shared.exceptions import WebhookAuthError
from callrecovery.shared.logging import get_logger
from callrecovery.telephony.factory import get_call_provider
from callrecovery.telephony.interface import CallProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["scheduler"])

MAX_RUN_LIMIT = 50


def _check_shared_secret(expected: str, provided: str | None) -> None:
    # An unset secret leaves the gate open for local development.
    if not expected:
        return
    if not hmac.compare_digest((provided or "").encode(), expected.encode()):
        raise WebhookAuthError()


def require_cron_token(x_cron_token: Annotated[str | None, Header()] = None) -> None:
    _check_shared_secret(get_settings().cron_token, x_cron_token)


def require_run_calls_secret(
    x_run_calls_secret: Annotated[str | None, Header()] = None,
) -> None:
    _check_shared_secret(get_settings().run_calls_secret, x_run_calls_secret)


def clamp_limit(value: Any, default: int = 10) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        limit = default
    return min(max(limit, 1), MAX_RUN_LIMIT)


@router.post("/cron", dependencies=[Depends(require_cron_token)])
async def cron(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[CallProvider, Depends(get_call_provider)],
) -> dict[str, Any]:
    summary = await run_recovery_cycle(session, provider=provider)
    return summary.as_dict()


@router.post("/call-jobs/run", dependencies=[Depends(require_run_calls_secret)])
async def run_call_jobs(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[CallProvider, Depends(get_call_provider)],
) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    shop = str(body["shop"]).strip() if body.get("shop") else None
    limit = clamp_limit(body.get("limit", get_settings().dispatch_limit))

    result = await JobDispatcher(session, provider=provider).run_due(limit, shop=shop)
    return {"ok": True, **result.as_dict()}
