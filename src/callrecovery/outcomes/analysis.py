"""
Normalisation of structured call analysis into call job columns.

Accepts both the provider's typed analysis and summarizer output. List-like
fields may arrive as arrays or as delimited strings.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

from callrecovery.telephony.parser import as_str

MAX_TAGS = 20
MAX_LIST_ITEMS = 5
MAX_ANALYSIS_JSON = 9000
DEFAULT_SUMMARY = "Call outcome received."


@dataclass(frozen=True)
class NormalizedAnalysis:
    """Canonical analysis fields ready to be written to a call job."""

    sentiment: str | None
    tags_csv: str | None
    reason: str | None
    next_action: str | None
    follow_up: str | None
    summary: str
    analysis_json: str | None
    payload: dict[str, Any]


def _split(value: str, pattern: str) -> list[str]:
    return [part.strip() for part in re.split(pattern, value) if part.strip()]


def _as_list(value: Any, text_value: Any, pattern: str) -> list[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    text = as_str(value) or as_str(text_value)
    return _split(text, pattern) if text else []


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number) if number.is_integer() else number


def to_csv(items: list[str], limit: int = MAX_TAGS) -> str | None:
    trimmed = [item for item in items if item][:limit]
    return ", ".join(trimmed) if trimmed else None


def safe_json(data: Any, max_length: int = MAX_ANALYSIS_JSON) -> str | None:
    try:
        text = json.dumps(data, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return None
    return text[:max_length] if text else None


def normalize_structured(structured: dict[str, Any]) -> NormalizedAnalysis:
    """Map a loosely-typed analysis object onto canonical fields.

    Args:
        structured: Provider structured output or parsed summarizer JSON.

    Returns:
        Normalised values; ``reason`` is composed from outcome, intent,
        objections and buy probability when no explicit reason is given.
    """
    o = structured or {}

    tags = _as_list(o.get("tags"), o.get("tagsCsv"), r"[,|]")
    objections = _as_list(o.get("objections"), o.get("objectionsText"), r",")
    key_quotes = _as_list(o.get("keyQuotes"), o.get("keyQuotesText"), r"\|")[:MAX_LIST_ITEMS]
    issues_to_fix = _as_list(o.get("issuesToFix"), o.get("issuesToFixText"), r",")[:MAX_LIST_ITEMS]

    sentiment = as_str(o.get("sentiment"))
    next_action = as_str(o.get("bestNextAction")) or as_str(o.get("nextAction"))
    follow_up = as_str(o.get("followUpMessage")) or as_str(o.get("followUp"))
    summary = as_str(o.get("summary")) or DEFAULT_SUMMARY
    intent = as_str(o.get("customerIntent"))
    call_outcome = as_str(o.get("callOutcome"))
    buy_probability = _to_number(o.get("buyProbability"))
    confidence = _to_number(o.get("confidence"))

    reason = as_str(o.get("reason"))
    if reason is None:
        parts = [
            f"Outcome: {call_outcome}" if call_outcome else None,
            f"Intent: {intent}" if intent else None,
            f"Objections: {', '.join(objections)}" if objections else None,
            f"Buy probability: {buy_probability}%" if buy_probability is not None else None,
        ]
        reason = " · ".join(p for p in parts if p) or None

    payload = {
        "sentiment": sentiment,
        "tags": tags,
        "reason": reason,
        "nextAction": next_action,
        "followUp": follow_up,
        "summary": summary,
        "confidence": confidence,
        "buyProbability": buy_probability,
        "answered": bool(o.get("answered")),
        "voicemail": bool(o.get("voicemail")),
        "callOutcome": call_outcome,
        "customerIntent": intent,
        "tone": as_str(o.get("tone")),
        "objections": objections,
        "keyQuotes": key_quotes,
        "issuesToFix": issues_to_fix,
    }

    return NormalizedAnalysis(
        sentiment=sentiment,
        tags_csv=to_csv(tags),
        reason=reason,
        next_action=next_action,
        follow_up=follow_up,
        summary=summary,
        analysis_json=safe_json(payload),
        payload=payload,
    )
