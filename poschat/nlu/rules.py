"""Rule-based order-intent heuristics.

Cheap structural signals (length, digits, question marks, what the cashier
said last) plus a small vocabulary of completion phrases and payment methods.
They only decide which handling path the orchestrator takes; the oracle still
interprets the utterance itself.
"""
import re
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from ..schemas.io_models import ConversationTurn
from ..schemas.receipt_models import Receipt

CUSTOMER = "Customer"

# phrase -> canonical method; longest phrases are matched first
PAYMENT_METHODS = {
    "pay with cash": "cash",
    "pay by card": "card",
    "credit card": "credit card",
    "debit card": "debit card",
    "apple pay": "apple pay",
    "google pay": "google pay",
    "pay now": "paynow",
    "paynow": "paynow",
    "mastercard": "card",
    "visa": "card",
    "nets": "nets",
    "card": "card",
    "cash": "cash",
}

COMPLETION_PHRASES = [
    "that's all", "thats all", "that is all", "that's it", "thats it",
    "nothing else", "no more", "finished", "done", "habis", "sudah", "selesai",
]

_SUMMARY_WORDS = ("total", "else", "complete")


class OrderIntent(str, Enum):
    continue_ordering = "continue_ordering"
    ready_for_payment = "ready_for_payment"
    empty_order_completion = "empty_order_completion"
    changed_mind_add_more = "changed_mind_add_more"
    question = "question"
    ambiguous = "ambiguous"


class OrderIntentAnalysis(BaseModel):
    original_input: str
    intent: OrderIntent = OrderIntent.ambiguous
    item_count: int = 0
    completion_likelihood: float = 0.0
    new_order_likelihood: float = 0.0
    question_likelihood: float = 0.0
    recent_completion_context: bool = False
    payment_method: Optional[str] = None
    indicators: List[str] = Field(default_factory=list)
    reasoning: str = ""

    @property
    def has_items(self) -> bool:
        return self.item_count > 0


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"(?<![a-z]){re.escape(phrase)}(?![a-z])", text) is not None


def resolve_payment_method(text: str) -> Optional[str]:
    """Return the canonical payment method named in ``text``, if any."""
    lowered = (text or "").lower()
    for phrase in sorted(PAYMENT_METHODS, key=len, reverse=True):
        if _contains_phrase(lowered, phrase):
            return PAYMENT_METHODS[phrase]
    return None


def is_completion_phrase(text: str) -> bool:
    lowered = (text or "").lower().strip()
    return any(_contains_phrase(lowered, phrase) for phrase in COMPLETION_PHRASES)


def _last_staff_turn(history: Sequence[ConversationTurn]) -> Optional[ConversationTurn]:
    for turn in reversed(list(history)[-3:]):
        if turn.is_system_generated or turn.sender.lower() != CUSTOMER.lower():
            return turn
    return None


def analyze_order_intent(text: str, receipt: Receipt, history: Sequence[ConversationTurn], now: datetime = None) -> OrderIntentAnalysis:
    """Classify one utterance into an ordering intent from structure and context."""
    now = now or datetime.now()
    stripped = (text or "").strip()
    words = stripped.split()
    analysis = OrderIntentAnalysis(
        original_input=stripped,
        item_count=len(receipt.items),
        payment_method=resolve_payment_method(stripped),
    )

    has_numbers = any(ch.isdigit() for ch in stripped)
    if len(words) <= 2 and not has_numbers:
        analysis.indicators.append("very short reply")
        analysis.completion_likelihood += 0.4
    if has_numbers:
        analysis.indicators.append("contains quantities")
        analysis.new_order_likelihood += 0.6
    if len(words) >= 4 and has_numbers:
        analysis.indicators.append("structured order")
        analysis.new_order_likelihood += 0.5
    if stripped.endswith("?"):
        analysis.indicators.append("question")
        analysis.question_likelihood = 0.8
    if is_completion_phrase(stripped):
        analysis.indicators.append("completion phrase")
        analysis.completion_likelihood += 0.6

    last_staff = _last_staff_turn(history)
    if last_staff is not None:
        staff_text = last_staff.text.lower()
        if any(word in staff_text for word in _SUMMARY_WORDS):
            analysis.recent_completion_context = True
            analysis.completion_likelihood += 0.3

    customer_turns = [t for t in history if t.sender.lower() == CUSTOMER.lower()]
    if customer_turns and now - customer_turns[-1].timestamp < timedelta(seconds=10):
        analysis.indicators.append("rapid follow-up")
        analysis.new_order_likelihood += 0.2

    if receipt.items:
        if receipt.item_count >= 2 and len(history) >= 4:
            analysis.completion_likelihood += 0.3
    else:
        analysis.completion_likelihood -= 0.4

    _decide(analysis)
    return analysis


def _decide(analysis: OrderIntentAnalysis) -> None:
    completion = analysis.completion_likelihood
    ordering = analysis.new_order_likelihood
    said_done = "completion phrase" in analysis.indicators

    if analysis.question_likelihood > 0.6:
        analysis.intent = OrderIntent.question
        analysis.reasoning = "question format"
    elif said_done and completion > ordering:
        if analysis.has_items:
            analysis.intent = OrderIntent.ready_for_payment
            analysis.reasoning = f"completion {completion:.2f} exceeds ordering {ordering:.2f}"
        else:
            analysis.intent = OrderIntent.empty_order_completion
            analysis.reasoning = "completion signals with an empty order"
    elif ordering > completion and ordering > 0.4:
        analysis.intent = OrderIntent.continue_ordering
        analysis.reasoning = f"ordering {ordering:.2f} exceeds completion {completion:.2f}"
    elif analysis.recent_completion_context:
        # Short replies to "anything else?" are usually another item
        analysis.intent = OrderIntent.changed_mind_add_more
        analysis.reasoning = "reply to a completion prompt without a completion phrase"
    else:
        analysis.intent = OrderIntent.ambiguous
        analysis.reasoning = "no dominant signal"
