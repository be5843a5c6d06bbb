"""Validation stage: an independent review of the planned tool calls."""
import json
from typing import List

from ..nlu.verdict_parser import extract_feedback, parse_verdict
from ..schemas.inference_models import ReasoningResult, ToolSelectionResult, ValidationResult
from ..schemas.tool_models import ToolInvocation
from ..utils.logger import get_logger
from .base_agent import BaseAgent

logger = get_logger("agents.validation")


def serialize_invocations(invocations: List[ToolInvocation]) -> str:
    if not invocations:
        return "(no tool calls)"
    return "\n".join(
        f"- {call.function_name}: {json.dumps(call.arguments, sort_keys=True)}" for call in invocations
    )


class ValidationAgent(BaseAgent):
    name = "validation"
    template = "validation"

    def run(self, reasoning: ReasoningResult, selection: ToolSelectionResult, transaction_state: str) -> ValidationResult:
        prompt = self._render(
            TransactionState=transaction_state,
            CashierReasoning=reasoning.summary,
            SelectedTools=serialize_invocations(selection.invocations),
            CashierJustification=selection.justification or "(none)",
        )
        response = self.gateway.call(prompt, tools=None, context={"transaction_state": transaction_state})
        verdict = parse_verdict(response.text)
        result = ValidationResult(verdict=verdict, review_text=response.text)
        if not result.approved:
            result.feedback = extract_feedback(response.text)
        logger.info(f"[INFERENCE] validation {verdict.decision.value}")
        self._think(f"validation {verdict.decision.value}: {verdict.rationale[:120]}")
        return result
