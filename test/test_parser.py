"""
Tests for the provider webhook parser.
"""

import pytest
from pydantic import TypeAdapter

from callrecovery.shared.exceptions import WebhookPayloadError
from callrecovery.telephony.events import (
    AnalysisEvent,
    EndOfCallReportEvent,
    ProviderEvent,
    StatusUpdateEvent,
    TranscriptEvent,
    UnknownEvent,
)
from callrecovery.telephony.parser import parse_provider_event, pick_correlation

METADATA = {"shop": "demo-shop.myshopify.com", "callJobId": "job-1", "checkoutId": "chk-1"}


def wrap(message: dict) -> dict:
    return {"message": message}


class TestCorrelation:
    def test_metadata_under_call_assistant(self) -> None:
        correlation = pick_correlation({"call": {"id": "call_1", "assistant": {"metadata": METADATA}}})

        assert correlation.shop == "demo-shop.myshopify.com"
        assert correlation.call_job_id == "job-1"
        assert correlation.checkout_id == "chk-1"
        assert correlation.provider_call_id == "call_1"

    def test_top_level_metadata_and_call_id(self) -> None:
        correlation = pick_correlation({"metadata": {"callJobId": 42}, "callId": "call_2"})

        assert correlation.call_job_id == "42"
        assert correlation.shop is None
        assert correlation.provider_call_id == "call_2"

    def test_metadata_outside_message_wrapper(self) -> None:
        event = parse_provider_event({"metadata": METADATA, "message": {"type": "status-update", "status": "ended"}})
        assert event.correlation.call_job_id == "job-1"


class TestEventKinds:
    def test_status_update(self) -> None:
        event = parse_provider_event(
            wrap({"type": "status-update", "status": "in-progress", "call": {"id": "c1", "metadata": METADATA}})
        )

        assert isinstance(event, StatusUpdateEvent)
        assert event.status == "in-progress"
        assert event.correlation.provider_call_id == "c1"

    def test_final_transcript(self) -> None:
        event = parse_provider_event(
            wrap({"type": "transcript", "transcriptType": "final", "transcript": " Hello. ", "role": "user"})
        )

        assert isinstance(event, TranscriptEvent)
        assert event.transcript == "Hello."
        assert event.is_final is True
        assert event.role == "user"

    @pytest.mark.parametrize(
        "message",
        [
            {"type": "transcript", "transcriptType": "partial", "transcript": "Hel"},
            {"type": 'transcript[transcriptType="partial"]', "transcript": "Hel"},
        ],
    )
    def test_partial_transcript(self, message: dict) -> None:
        event = parse_provider_event(wrap(message))

        assert isinstance(event, TranscriptEvent)
        assert event.is_final is False

    def test_end_of_call_report(self) -> None:
        event = parse_provider_event(
            wrap(
                {
                    "type": "end-of-call-report",
                    "endedReason": "customer-ended-call",
                    "artifact": {"transcript": "AI: Hi", "recordingUrl": "https://rec.example.com/1.wav"},
                    "analysis": {"summary": "Short call"},
                    "call": {"id": "c1", "assistant": {"metadata": METADATA}},
                }
            )
        )

        assert isinstance(event, EndOfCallReportEvent)
        assert event.ended_reason == "customer-ended-call"
        assert event.transcript == "AI: Hi"
        assert event.recording_url == "https://rec.example.com/1.wav"
        assert event.analysis == {"summary": "Short call"}
        assert event.structured is None
        assert event.is_failure is False

    def test_end_of_call_report_with_structured_output(self) -> None:
        event = parse_provider_event(
            wrap(
                {
                    "type": "end-of-call-report",
                    "endedReason": "assistant-ended-call",
                    "call": {
                        "analysis": {"structuredOutputs": {"checkout_call_outcome": {"sentiment": "positive"}}},
                    },
                }
            )
        )

        assert isinstance(event, EndOfCallReportEvent)
        assert event.structured == {"sentiment": "positive"}

    def test_error_marks_report_failed(self) -> None:
        event = parse_provider_event(wrap({"type": "end-of-call-report", "error": "twilio rejected"}))
        assert event.is_failure is True

    def test_untyped_structured_payload_is_analysis(self) -> None:
        event = parse_provider_event({"structuredOutput": {"sentiment": "neutral"}, "metadata": METADATA})

        assert isinstance(event, AnalysisEvent)
        assert event.structured == {"sentiment": "neutral"}

    def test_untyped_payload_with_ended_reason_is_report(self) -> None:
        event = parse_provider_event({"endedReason": "voicemail", "transcript": "Leave a message"})
        assert isinstance(event, EndOfCallReportEvent)

    def test_unknown_type_keeps_raw_body(self) -> None:
        event = parse_provider_event(wrap({"type": "hang", "call": {"id": "c1"}}))

        assert isinstance(event, UnknownEvent)
        assert event.event_type == "hang"
        assert '"hang"' in event.raw

    def test_transcript_without_text_is_unknown(self) -> None:
        assert isinstance(parse_provider_event(wrap({"type": "transcript"})), UnknownEvent)

    @pytest.mark.parametrize("body", [[], "text", None, 3])
    def test_non_object_body_rejected(self, body) -> None:
        with pytest.raises(WebhookPayloadError):
            parse_provider_event(body)


def test_events_round_trip_through_discriminated_union() -> None:
    event = parse_provider_event(wrap({"type": "status-update", "status": "ended"}))
    restored = TypeAdapter(ProviderEvent).validate_python(event.model_dump())
    assert restored == event
