"""
Tolerant parser turning provider webhook bodies into canonical events.

Bodies arrive either flat or wrapped in ``{"message": {...}}``, and the same
field can live under several keys depending on the event and API version.
"""

import json
from typing import Any

from callrecovery.shared.exceptions import WebhookPayloadError
from callrecovery.telephony.events import (
    AnalysisEvent,
    Correlation,
    EndOfCallReportEvent,
    ProviderEvent,
    StatusUpdateEvent,
    TranscriptEvent,
    UnknownEvent,
)

STRUCTURED_OUTPUT_NAME = "checkout_call_outcome"
MAX_RAW_LENGTH = 2000


def as_str(value: Any) -> str | None:
    """Stripped string form of a scalar; None when empty."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = value if isinstance(value, str) else str(value)
    text = text.strip()
    return text or None


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _first_str(data: dict[str, Any], *paths: tuple[str, ...]) -> str | None:
    for path in paths:
        value = as_str(_dig(data, *path))
        if value:
            return value
    return None


def _first_dict(data: dict[str, Any], *paths: tuple[str, ...]) -> dict[str, Any] | None:
    for path in paths:
        value = _dig(data, *path)
        if isinstance(value, dict) and value:
            return value
    return None


def _metadata(message: dict[str, Any]) -> dict[str, Any]:
    return _first_dict(
        message,
        ("assistant", "metadata"),
        ("call", "assistant", "metadata"),
        ("metadata",),
        ("call", "metadata"),
    ) or {}


def pick_correlation(message: dict[str, Any]) -> Correlation:
    metadata = _metadata(message)
    return Correlation(
        shop=as_str(metadata.get("shop")),
        call_job_id=as_str(metadata.get("callJobId")),
        checkout_id=as_str(metadata.get("checkoutId")),
        provider_call_id=_first_str(message, ("call", "id"), ("callId",), ("id",), ("call", "callId")),
    )


def pick_structured(message: dict[str, Any]) -> dict[str, Any] | None:
    return _first_dict(
        message,
        ("call", "analysis", "structuredOutput"),
        ("call", "analysis", "structuredOutputs", STRUCTURED_OUTPUT_NAME),
        ("analysis", "structuredOutput"),
        ("analysis", "structuredOutputs", STRUCTURED_OUTPUT_NAME),
        ("artifact", "structuredOutputs", STRUCTURED_OUTPUT_NAME),
        ("structuredOutput",),
        ("structuredOutputs", STRUCTURED_OUTPUT_NAME),
    )


def _ended_reason(message: dict[str, Any]) -> str | None:
    return _first_str(message, ("endedReason",), ("call", "endedReason"), ("call", "endReason"))


def _transcript(message: dict[str, Any]) -> str | None:
    return _first_str(message, ("transcript",), ("artifact", "transcript"), ("call", "transcript"))


def _status(message: dict[str, Any]) -> str | None:
    return _first_str(message, ("status",), ("call", "status"))


def _infer_type(message: dict[str, Any]) -> str:
    if pick_structured(message):
        return "analysis"
    if _ended_reason(message):
        return "end-of-call-report"
    if _transcript(message):
        return "transcript"
    if _status(message):
        return "status-update"
    return "unknown"


def _is_final_transcript(message: dict[str, Any], event_type: str) -> bool:
    transcript_type = as_str(message.get("transcriptType"))
    if transcript_type is not None:
        return transcript_type.lower() == "final"
    # e.g. 'transcript[transcriptType="partial"]'
    if "partial" in event_type:
        return False
    return True


def parse_provider_event(body: Any) -> ProviderEvent:
    """Normalise a decoded webhook body.

    Args:
        body: JSON-decoded request body.

    Returns:
        One of the canonical event models.

    Raises:
        WebhookPayloadError: If the body is not a JSON object.
    """
    if not isinstance(body, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")

    message = body.get("message") if isinstance(body.get("message"), dict) else body
    correlation = pick_correlation(message)
    if correlation == Correlation() and message is not body:
        correlation = pick_correlation(body)

    raw_type = as_str(message.get("type"))
    event_type = (raw_type or _infer_type(message)).lower()

    if event_type == "status-update":
        return StatusUpdateEvent(
            correlation=correlation,
            event_type=raw_type,
            status=_status(message),
            ended_reason=_ended_reason(message),
        )

    if event_type.startswith("transcript"):
        transcript = _transcript(message)
        if transcript:
            return TranscriptEvent(
                correlation=correlation,
                event_type=raw_type,
                transcript=transcript,
                is_final=_is_final_transcript(message, event_type),
                role=as_str(message.get("role")),
            )

    if event_type == "end-of-call-report":
        return EndOfCallReportEvent(
            correlation=correlation,
            event_type=raw_type,
            ended_reason=_ended_reason(message),
            transcript=_transcript(message),
            recording_url=_first_str(
                message,
                ("recordingUrl",),
                ("artifact", "recordingUrl"),
                ("call", "recordingUrl"),
                ("call", "recording", "url"),
            ),
            error=_first_str(message, ("error",), ("call", "error")),
            structured=pick_structured(message),
            analysis=_first_dict(message, ("analysis",), ("call", "analysis")),
        )

    if event_type in ("analysis", "structured-output"):
        structured = pick_structured(message)
        if structured:
            return AnalysisEvent(correlation=correlation, event_type=raw_type, structured=structured)

    return UnknownEvent(
        correlation=correlation,
        event_type=raw_type,
        raw=json.dumps(message, default=str)[:MAX_RAW_LENGTH],
    )
