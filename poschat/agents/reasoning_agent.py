"""Reasoning stage: ask the oracle what the customer wants, in plain words."""
from datetime import datetime
from typing import Optional, Sequence

from ..app.config import ConfigurationError
from ..schemas.inference_models import ReasoningResult
from ..schemas.io_models import ConversationTurn
from ..schemas.tool_models import ToolInvocation
from ..tools import definitions as tools
from ..tools.provider import ToolExecutionProvider
from ..utils.logger import get_logger
from .base_agent import BaseAgent

logger = get_logger("agents.reasoning")

SUMMARY_MAX_LENGTH = 200
DEFAULT_SUMMARY = "Intent analysis completed"
RETRY_NOTICE = "Previous validation failed - reconsider approach"
INVENTORY_HINT_COUNT = 10


def summarize(reasoning: str) -> str:
    """First non-empty line among the first three, capped at 200 characters."""
    for line in (reasoning or "").splitlines()[:3]:
        line = line.strip()
        if line:
            if len(line) > SUMMARY_MAX_LENGTH:
                return line[:SUMMARY_MAX_LENGTH] + "..."
            return line
    return DEFAULT_SUMMARY


def format_history(history: Sequence[ConversationTurn]) -> str:
    if not history:
        return "(no previous messages)"
    return "\n".join(f"{turn.sender}: {turn.text}" for turn in history)


class ReasoningAgent(BaseAgent):
    name = "reasoning"
    template = "reasoning"

    def __init__(self, gateway, prompts, personality, store_variables, provider: ToolExecutionProvider, thoughts=None):
        super().__init__(gateway, prompts, personality, store_variables, thoughts)
        self.provider = provider
        self._inventory_context: Optional[str] = None

    def inventory_context(self) -> str:
        """Popular-items hint, loaded once per agent."""
        if self._inventory_context is None:
            result = self.provider.execute(ToolInvocation(
                function_name=tools.GET_POPULAR_ITEMS,
                arguments={"count": INVENTORY_HINT_COUNT},
            ))
            if not result or result.startswith("ERROR"):
                raise ConfigurationError(
                    f"DESIGN DEFICIENCY: inventory context could not be loaded from the catalog: {result or 'empty result'}"
                )
            self._inventory_context = result
        return self._inventory_context

    def run(
        self,
        customer_input: str,
        transaction_state: str,
        attempt: int,
        previous_feedback: str = "",
        history: Sequence[ConversationTurn] = (),
        hint: str = "",
    ) -> ReasoningResult:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        previous = ""
        if attempt > 1:
            previous = f"{RETRY_NOTICE}\nReviewer feedback: {previous_feedback or '(none given)'}"

        prompt = self._render(
            CurrentTime=timestamp,
            TransactionState=transaction_state,
            InventoryContext=self.inventory_context(),
            ConversationHistory=format_history(history),
            ClarificationHint=hint or "",
            PreviousAttempts=previous,
            AttemptNumber=attempt,
            CustomerInput=customer_input,
        )
        context = {
            "store_name": self.store_variables.get("StoreName"),
            "culture_code": self.store_variables.get("CultureCode"),
            "timestamp": timestamp,
            "transaction_state": transaction_state,
            "attempt": attempt,
        }
        if attempt > 1:
            context["previous_validation"] = RETRY_NOTICE

        response = self.gateway.call(prompt, tools=None, context=context)
        summary = summarize(response.text)
        logger.info(f"[INFERENCE] attempt {attempt} reasoning: {summary}")
        self._think(summary)
        return ReasoningResult(reasoning=response.text, summary=summary, attempt=attempt)
