"""Coerce the validation reviewer's reply into a typed verdict.

Business code only ever sees ``ValidationVerdict``. The reviewer is asked for
a JSON object ``{"decision": "APPROVED" | "REJECTED", "rationale": "..."}``;
when it answers in prose instead, the decision is the case-insensitive
presence of the ``APPROVED`` token.
"""
import json
from typing import Any, Dict, Iterator, Optional

from pydantic import ValidationError

from ..schemas.inference_models import ValidationDecision, ValidationVerdict

APPROVAL_TOKEN = "APPROVED"

_DECODER = json.JSONDecoder()


def _json_objects(text: str) -> Iterator[Dict[str, Any]]:
    """Every JSON object embedded in ``text``, scanning from each opening brace."""
    start = text.find("{")
    while start != -1:
        try:
            data, end = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(data, dict):
            yield data
        start = text.find("{", end)


def _verdict_from_json(text: str) -> Optional[ValidationVerdict]:
    for data in _json_objects(text):
        if "decision" not in data:
            continue
        decision = str(data.get("decision", "")).strip().upper()
        try:
            return ValidationVerdict(decision=decision, rationale=str(data.get("rationale", "")))
        except ValidationError:
            return None
    return None


def parse_verdict(text: str) -> ValidationVerdict:
    text = text or ""
    verdict = _verdict_from_json(text)
    if verdict is not None:
        return verdict
    approved = APPROVAL_TOKEN.lower() in text.lower()
    return ValidationVerdict(
        decision=ValidationDecision.approved if approved else ValidationDecision.rejected,
        rationale=text.strip(),
    )


def extract_feedback(text: str) -> str:
    """First line mentioning feedback, otherwise the whole review."""
    for line in (text or "").splitlines():
        if "feedback" in line.lower():
            return line.strip()
    return (text or "").strip()
