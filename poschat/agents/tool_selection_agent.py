"""Tool selection stage: turn the reasoning summary into tool invocations."""
from ..schemas.inference_models import ReasoningResult, ToolSelectionResult
from ..tools.provider import ToolExecutionProvider
from ..utils.logger import get_logger
from .base_agent import BaseAgent

logger = get_logger("agents.tool_selection")


class ToolSelectionAgent(BaseAgent):
    name = "tool_selection"
    template = "tool_selection"

    def __init__(self, gateway, prompts, personality, store_variables, provider: ToolExecutionProvider, thoughts=None):
        super().__init__(gateway, prompts, personality, store_variables, thoughts)
        self.provider = provider

    def run(self, customer_input: str, reasoning: ReasoningResult, transaction_state: str) -> ToolSelectionResult:
        available = self.provider.get_available_tools()
        prompt = self._render(
            TransactionState=transaction_state,
            CustomerInput=customer_input,
            ReasoningSummary=reasoning.summary,
            AvailableTools="\n".join(tool.summary_line() for tool in available),
        )
        response = self.gateway.call(
            prompt,
            tools=available,
            context={"transaction_state": transaction_state, "reasoning": reasoning.summary},
        )
        names = [call.function_name for call in response.tool_calls]
        logger.info(f"[INFERENCE] selected tools: {names or 'none'}")
        self._think(f"selected {names or 'no tools'}")
        return ToolSelectionResult(invocations=response.tool_calls, justification=response.text)
