"""
Canonical provider webhook events.

The ingestor only ever sees these models; raw payload shapes stay inside
``callrecovery.telephony.parser``.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Correlation(BaseModel):
    """Identifiers used to find the call job an event belongs to."""

    model_config = ConfigDict(frozen=True)

    shop: str | None = None
    call_job_id: str | None = None
    checkout_id: str | None = None
    provider_call_id: str | None = None


class _ProviderEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    correlation: Correlation = Field(default_factory=Correlation)
    event_type: str | None = Field(
        default=None,
        description="Type string as sent by the provider",
    )


class StatusUpdateEvent(_ProviderEvent):
    kind: Literal["status-update"] = "status-update"
    status: str | None = None
    ended_reason: str | None = None


class TranscriptEvent(_ProviderEvent):
    kind: Literal["transcript"] = "transcript"
    transcript: str
    is_final: bool = True
    role: str | None = None


class EndOfCallReportEvent(_ProviderEvent):
    kind: Literal["end-of-call-report"] = "end-of-call-report"
    ended_reason: str | None = None
    transcript: str | None = None
    recording_url: str | None = None
    error: str | None = None
    structured: dict[str, Any] | None = Field(
        default=None,
        description="Typed analysis supplied by the provider, if any",
    )
    analysis: dict[str, Any] | None = Field(
        default=None,
        description="Untyped provider analysis block, kept for reference",
    )

    @property
    def is_failure(self) -> bool:
        if self.error:
            return True
        reason = (self.ended_reason or "").lower()
        return "error" in reason or "fail" in reason


class AnalysisEvent(_ProviderEvent):
    kind: Literal["analysis"] = "analysis"
    structured: dict[str, Any]


class UnknownEvent(_ProviderEvent):
    kind: Literal["unknown"] = "unknown"
    raw: str = ""


ProviderEvent = Annotated[
    Union[StatusUpdateEvent, TranscriptEvent, EndOfCallReportEvent, AnalysisEvent, UnknownEvent],
    Field(discriminator="kind"),
]

__all__ = [
    "AnalysisEvent",
    "Correlation",
    "EndOfCallReportEvent",
    "ProviderEvent",
    "StatusUpdateEvent",
    "TranscriptEvent",
    "UnknownEvent",
]
