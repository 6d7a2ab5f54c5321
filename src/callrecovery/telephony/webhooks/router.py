"""
FastAPI router for calling provider webhooks.

The provider retries and alerts on non-2xx answers, so after authentication
and body decoding every request is acknowledged with 200, including events
that match no job or fail while being applied.
"""

import hmac
from functools import lru_cache
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.config import get_settings
from callrecovery.llm.openai_adapter import TranscriptSummarizer, get_summarizer
from callrecovery.outcomes.ingestor import OutcomeIngestor
from callrecovery.shared.database import get_db_session
from callrecovery.shared.exceptions import WebhookAuthError, WebhookPayloadError
from callrecovery.shared.logging import correlation_id_var, get_logger
from callrecovery.telephony.parser import parse_provider_event

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@lru_cache(maxsize=1)
def get_transcript_summarizer() -> TranscriptSummarizer | None:
    return get_summarizer()


async def close_transcript_summarizer() -> None:
    """Close the cached summarizer, if one was ever built."""
    if get_transcript_summarizer.cache_info().currsize == 0:
        return
    summarizer = get_transcript_summarizer()
    get_transcript_summarizer.cache_clear()
    if summarizer is not None:
        await summarizer.aclose()


def get_outcome_ingestor(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    summarizer: Annotated[TranscriptSummarizer | None, Depends(get_transcript_summarizer)],
) -> OutcomeIngestor:
    return OutcomeIngestor(session, summarizer=summarizer)


def verify_provider_secret(secret: str) -> None:
    expected = get_settings().provider_webhook_secret
    # Unlike the operator endpoints, this gate is never open.
    if not expected or not hmac.compare_digest(secret.encode(), expected.encode()):
        raise WebhookAuthError()


@router.post("/vapi", status_code=status.HTTP_200_OK)
async def receive_provider_event(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    ingestor: Annotated[OutcomeIngestor, Depends(get_outcome_ingestor)],
    secret: Annotated[str, Query()] = "",
) -> dict[str, Any]:
    verify_provider_secret(secret)

    try:
        body = await request.json()
    except ValueError as e:
        raise WebhookPayloadError("Webhook body is not valid JSON") from e

    event = parse_provider_event(body)
    correlation = event.correlation
    token = correlation_id_var.set(correlation.call_job_id or correlation.provider_call_id)
    try:
        result = (await ingestor.ingest(event)).value
    except Exception:
        await session.rollback()
        logger.exception(
            "Failed to process provider event (ACKing 200)",
            extra={"kind": event.kind, "call_job_id": correlation.call_job_id},
        )
        result = "error"
    finally:
        correlation_id_var.reset(token)

    return {"ok": True, "result": result}
