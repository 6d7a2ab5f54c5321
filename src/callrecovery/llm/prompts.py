"""
Prompt for turning a call transcript into structured analysis.
"""

from callrecovery.llm.models import ChatMessage, MessageRole

MAX_TRANSCRIPT_CHARS = 12000

SUMMARY_SYSTEM_PROMPT = """You analyse phone calls placed to shoppers who left a checkout unfinished.
Reply with a single JSON object and nothing else, using exactly these keys:
{
  "sentiment": "positive" | "neutral" | "negative",
  "tags": [short lowercase labels such as "price", "shipping", "voicemail"],
  "reason": one sentence on why the customer did or did not buy,
  "nextAction": the single best next step for the merchant,
  "followUp": a short message the merchant could send the customer,
  "confidence": number between 0 and 1,
  "summary": two sentences summarising the call
}
If the call never connected, say so in "summary" and use the tag "no_answer"."""


def build_summary_messages(transcript: str, ended_reason: str | None = None) -> list[ChatMessage]:
    """Build the chat messages for one transcript.

    Long transcripts keep their tail, where the outcome usually is.
    """
    text = transcript.strip()
    if len(text) > MAX_TRANSCRIPT_CHARS:
        text = text[-MAX_TRANSCRIPT_CHARS:]

    user = f"Ended reason: {ended_reason or 'unknown'}\n\nTranscript:\n{text}"
    return [
        ChatMessage(role=MessageRole.SYSTEM, content=SUMMARY_SYSTEM_PROMPT),
        ChatMessage(role=MessageRole.USER, content=user),
    ]
