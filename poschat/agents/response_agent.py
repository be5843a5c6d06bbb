"""Response stage: phrase the reply the customer sees."""
from ..schemas.inference_models import ExecutionResult, ReasoningResult
from ..utils.logger import get_logger
from .base_agent import BaseAgent

logger = get_logger("agents.response")

FALLBACK_RESPONSE = "I've processed your request."


class ResponseAgent(BaseAgent):
    name = "response"
    template = "response"

    def run(self, customer_input: str, reasoning: ReasoningResult, execution: ExecutionResult, transaction_state: str) -> str:
        prompt = self._render(
            OriginalCustomerInput=customer_input,
            ReasoningPerformed=reasoning.summary,
            ToolsExecuted=", ".join(execution.tools_executed) or "none",
            ExecutionResults="\n".join(execution.results) or "none",
            CurrentState=transaction_state,
        )
        response = self.gateway.call(prompt, tools=None, context={"transaction_state": transaction_state})
        text = response.text.strip()
        if not text:
            logger.warning("[INFERENCE] empty response from model, using fallback")
            return FALLBACK_RESPONSE
        return text
