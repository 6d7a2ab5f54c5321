"""
Folds provider call events into call job state.

Writes are merges: a field is only overwritten by a non-empty value, status
changes follow ``is_allowed_transition`` and each update is guarded by the
status the job had when it was read. A CANCELED job ignores every event.
"""

from enum import Enum
from typing import Any

from sqlalchemy import ColumnElement, Text, case, func, literal, or_
from sqlalchemy.ext.asyncio import AsyncSession

from callrecovery.calls.models import CallJob, CallJobStatus
from callrecovery.calls.repository import CallJobRepository
from callrecovery.llm.openai_adapter import TranscriptSummarizer
from callrecovery.llm.response_parser import parse_analysis_text
from callrecovery.outcomes.analysis import normalize_structured, safe_json
from callrecovery.outcomes.correlation import resolve_job
from callrecovery.shared.logging import get_logger
from callrecovery.telephony.events import (
    AnalysisEvent,
    EndOfCallReportEvent,
    ProviderEvent,
    StatusUpdateEvent,
    TranscriptEvent,
    UnknownEvent,
)

logger = get_logger(__name__)

MAX_TRANSCRIPT_LENGTH = 20000
MAX_OUTCOME_LENGTH = 2000
DEFAULT_PROVIDER = "vapi"


class IngestOutcome(str, Enum):
    """What happened to one event."""

    APPLIED = "applied"
    IGNORED = "ignored"
    DISCARDED = "discarded"
    PARTIAL = "partial"
    CONFLICT = "conflict"


_TERMINAL_FROM_ACTIVE = {CallJobStatus.QUEUED, CallJobStatus.CALLING}


def map_provider_status(status: str | None) -> CallJobStatus | None:
    """Map provider status vocabulary onto job statuses.

    Args:
        status: Raw provider status, e.g. ``"in-progress"`` or ``"ended"``.

    Returns:
        The matching job status, or None for unknown values.
    """
    if not status:
        return None
    s = status.replace("-", "_").upper()
    if "CANCELED" in s or "CANCELLED" in s:
        return CallJobStatus.CANCELED
    if "FAILED" in s:
        return CallJobStatus.FAILED
    if "ENDED" in s or "COMPLETED" in s or "FINISHED" in s:
        return CallJobStatus.COMPLETED
    if "IN_PROGRESS" in s or "RINGING" in s or "QUEUED" in s or "CALLING" in s:
        return CallJobStatus.CALLING
    return None


def is_allowed_transition(current: CallJobStatus, target: CallJobStatus) -> bool:
    """Whether an event may move a job from ``current`` to ``target``.

    Events never reopen a job (QUEUED is only set by the dispatcher's retry),
    never leave CANCELED and never claim a QUEUED job as CALLING.
    COMPLETED and FAILED may replace each other when a later report corrects
    an earlier status.
    """
    if current == CallJobStatus.CANCELED or target == CallJobStatus.QUEUED:
        return False
    if target == CallJobStatus.CALLING:
        return current == CallJobStatus.CALLING
    if target == CallJobStatus.CANCELED:
        return current in _TERMINAL_FROM_ACTIVE or current == target
    return current in _TERMINAL_FROM_ACTIVE or current in (CallJobStatus.COMPLETED, CallJobStatus.FAILED)


def appended_transcript(chunk: str) -> ColumnElement[str]:
    """SQL expression appending ``chunk`` to the stored transcript.

    The concatenation happens inside the UPDATE, so concurrent appends to the
    same job each see the other's committed text. A newline separates chunks
    unless the stored text already ends with one; the result is capped at
    ``MAX_TRANSCRIPT_LENGTH`` characters.
    """
    current = CallJob.transcript
    new_chunk = literal(chunk, Text)
    merged = case(
        (or_(current.is_(None), current == ""), new_chunk),
        (func.substr(current, func.length(current)) == "\n", current + new_chunk),
        else_=current + "\n" + new_chunk,
    )
    return func.substr(merged, 1, MAX_TRANSCRIPT_LENGTH)


def _truncate(text: str, limit: int = MAX_OUTCOME_LENGTH) -> str:
    return text[:limit]


class OutcomeIngestor:
    """Applies canonical provider events to the matching call job."""

    def __init__(
        self,
        session: AsyncSession,
        summarizer: TranscriptSummarizer | None = None,
        max_update_attempts: int = 3,
    ) -> None:
        """Initialize the ingestor.

        Args:
            session: Async database session.
            summarizer: Optional transcript summarizer for end-of-call reports.
            max_update_attempts: Re-read/re-apply rounds when a concurrent
                writer changed the job's status between read and write.
        """
        self._session = session
        self._summarizer = summarizer
        self._max_update_attempts = max(1, max_update_attempts)
        self._jobs = CallJobRepository(session)

    async def ingest(self, event: ProviderEvent) -> IngestOutcome:
        """Correlate ``event`` to a job and fold it in.

        Args:
            event: Canonical event from the webhook parser.

        Returns:
            How the event was handled. Correlation misses return IGNORED.
        """
        extra = {"kind": event.kind, **event.correlation.model_dump()}

        job = await resolve_job(self._jobs, event.correlation)
        if job is None:
            logger.info("No call job matches provider event, ignoring", extra=extra)
            return IngestOutcome.IGNORED
        job_id = job.id
        extra["call_job_id"] = job_id

        if job.status == CallJobStatus.CANCELED:
            logger.info("Discarding event for canceled call job", extra=extra)
            return IngestOutcome.DISCARDED

        if isinstance(event, TranscriptEvent) and not event.is_final:
            return IngestOutcome.PARTIAL

        analysis: dict[str, Any] | None = None
        if isinstance(event, EndOfCallReportEvent) and not event.structured:
            analysis = await self._summarize(event.transcript or job.transcript, event.ended_reason, extra)

        for _ in range(self._max_update_attempts):
            if job.status == CallJobStatus.CANCELED:
                logger.info("Call job canceled concurrently, discarding event", extra=extra)
                return IngestOutcome.DISCARDED

            new_status, values = self._plan(event, job, analysis)
            if new_status is None and not values:
                return IngestOutcome.APPLIED

            from_status = job.status
            applied = await self._jobs.transition(job_id, from_status, new_status, **values)
            if applied:
                await self._session.commit()
                logger.info(
                    "Provider event applied",
                    extra={
                        **extra,
                        "from_status": from_status.value,
                        "to_status": (new_status or from_status).value,
                    },
                )
                return IngestOutcome.APPLIED

            await self._session.rollback()
            job = await self._jobs.get(job_id)
            if job is None:
                return IngestOutcome.IGNORED

        logger.warning("Call job kept changing, event not applied", extra=extra)
        return IngestOutcome.CONFLICT

    def _plan(
        self,
        event: ProviderEvent,
        job: CallJob,
        analysis: dict[str, Any] | None,
    ) -> tuple[CallJobStatus | None, dict[str, Any]]:
        values: dict[str, Any] = {}
        target: CallJobStatus | None = None

        if not job.provider:
            values["provider"] = DEFAULT_PROVIDER
        # A QUEUED job must stay claimable, which requires an empty provider call id.
        if event.correlation.provider_call_id and not job.provider_call_id and job.status != CallJobStatus.QUEUED:
            values["provider_call_id"] = event.correlation.provider_call_id

        match event:
            case StatusUpdateEvent():
                target = map_provider_status(event.status)
                if event.status:
                    values["outcome"] = _truncate(f"STATUS:{event.status}")
                if event.ended_reason:
                    values["ended_reason"] = event.ended_reason

            case TranscriptEvent():
                values["transcript"] = appended_transcript(event.transcript)

            case EndOfCallReportEvent():
                target = CallJobStatus.FAILED if event.is_failure else CallJobStatus.COMPLETED
                if event.ended_reason:
                    values["ended_reason"] = event.ended_reason
                if event.transcript:
                    values["transcript"] = event.transcript[:MAX_TRANSCRIPT_LENGTH]
                if event.recording_url:
                    values["recording_url"] = event.recording_url
                values["outcome"] = _truncate(f"ENDED:{event.ended_reason or 'unknown'}")

                if event.structured:
                    values.update(self._analysis_values(event.structured))
                elif analysis is not None:
                    values.update(self._analysis_values(analysis))
                elif event.analysis:
                    values["analysis_json"] = safe_json(event.analysis)

            case AnalysisEvent():
                values.update(self._analysis_values(event.structured))

            case UnknownEvent():
                values["outcome"] = _truncate(f"EVENT:{event.event_type or 'unknown'} {event.raw}")

        if target is not None and not is_allowed_transition(job.status, target):
            target = None
        if target == job.status:
            target = None
        return target, values

    @staticmethod
    def _analysis_values(structured: dict[str, Any]) -> dict[str, Any]:
        if "raw" in structured and len(structured) == 1:
            return {"analysis_json": safe_json(structured)}

        norm = normalize_structured(structured)
        candidates = {
            "sentiment": norm.sentiment,
            "tags_csv": norm.tags_csv,
            "reason": norm.reason,
            "next_action": norm.next_action,
            "follow_up": norm.follow_up,
            "analysis_json": norm.analysis_json,
            "outcome": _truncate(norm.summary),
        }
        return {k: v for k, v in candidates.items() if v is not None}

    async def _summarize(
        self,
        transcript: str | None,
        ended_reason: str | None,
        extra: dict[str, Any],
    ) -> dict[str, Any] | None:
        if self._summarizer is None or not transcript or not transcript.strip():
            return None
        try:
            text = await self._summarizer.summarize(transcript, ended_reason)
        except Exception:
            # Enrichment is optional; the report itself must still be stored.
            logger.exception("Transcript summarizer failed", extra=extra)
            return None

        parsed = parse_analysis_text(text)
        if parsed is None:
            logger.warning("Summarizer output is not JSON, keeping raw text", extra=extra)
            return {"raw": text}
        return parsed
