"""
Inference loop: reason, select tools, validate, execute, respond.

A rejected plan is retried with the reviewer's feedback until the configured
attempt limit. The loop always ends in a result; it only raises for missing
configuration or if it somehow runs out of attempts without deciding.
"""
from typing import Optional, Sequence

from ..app.config import ConfigurationError
from ..schemas.inference_models import ExecutionResult, FailureKind, InferenceResult
from ..schemas.io_models import ConversationTurn
from ..utils.logger import get_logger
from ..utils.thought_logger import ThoughtLogger
from .execution_agent import ExecutionAgent
from .reasoning_agent import ReasoningAgent
from .response_agent import ResponseAgent
from .tool_selection_agent import ToolSelectionAgent
from .validation_agent import ValidationAgent

logger = get_logger("agents.inference_loop")

VALIDATION_EXHAUSTED_RESPONSE = "I'm having trouble understanding your request. Could you please rephrase that?"
VALIDATION_EXHAUSTED_REASON = "Maximum validation attempts exceeded"
TECHNICAL_ISSUE_RESPONSE = "I'm experiencing a technical issue. Please let me know if you'd like to try again."


class InferenceLoopError(RuntimeError):
    """The loop finished without producing a result."""


class InferenceLoop:
    def __init__(
        self,
        reasoning: ReasoningAgent,
        selection: ToolSelectionAgent,
        validation: ValidationAgent,
        execution: ExecutionAgent,
        response: ResponseAgent,
        max_attempts: Optional[int],
        thoughts: Optional[ThoughtLogger] = None,
    ):
        if max_attempts is None:
            raise ConfigurationError("DESIGN DEFICIENCY: MAX_INFERENCE_ATTEMPTS is not configured")
        if max_attempts < 1:
            raise ConfigurationError(f"DESIGN DEFICIENCY: MAX_INFERENCE_ATTEMPTS must be at least 1, got {max_attempts}")
        self.reasoning = reasoning
        self.selection = selection
        self.validation = validation
        self.execution = execution
        self.response = response
        self.max_attempts = max_attempts
        self.thoughts = thoughts

    def run(
        self,
        customer_input: str,
        transaction_state: str,
        history: Sequence[ConversationTurn] = (),
        hint: str = "",
    ) -> InferenceResult:
        """
        Process one customer utterance.

        Args:
            customer_input: What the customer said
            transaction_state: Short description of the current order
            history: Recent conversation turns
            hint: Extra guidance, e.g. that the customer is choosing between listed options

        Returns:
            InferenceResult; ``success`` is False when validation never approved or a stage failed
        """
        logger.info(f"[WORKFLOW] inference start: '{customer_input}' state={transaction_state}")
        feedback = ""

        for attempt in range(1, self.max_attempts + 1):
            final = attempt == self.max_attempts
            try:
                reasoning = self.reasoning.run(
                    customer_input, transaction_state, attempt,
                    previous_feedback=feedback, history=history, hint=hint,
                )
                selection = self.selection.run(customer_input, reasoning, transaction_state)
                review = self.validation.run(reasoning, selection, transaction_state)

                if not review.approved:
                    feedback = review.feedback
                    logger.info(f"[INFERENCE] attempt {attempt}/{self.max_attempts} rejected: {feedback[:120]}")
                    if final:
                        return InferenceResult(
                            success=False,
                            customer_response=VALIDATION_EXHAUSTED_RESPONSE,
                            iterations_used=attempt,
                            failure_reason=VALIDATION_EXHAUSTED_REASON,
                            failure_kind=FailureKind.validation_exhausted,
                        )
                    continue

                execution = self.execution.run(selection.invocations) if selection.invocations else ExecutionResult()
                reply = self.response.run(customer_input, reasoning, execution, transaction_state)
                if self.thoughts is not None:
                    self.thoughts.log_decision(f"approved on attempt {attempt}", reasoning.summary)
                logger.info(f"[WORKFLOW] inference done in {attempt} attempt(s), tools={execution.tools_executed}")
                return InferenceResult(
                    success=True,
                    customer_response=reply,
                    tools_executed=execution.tools_executed,
                    iterations_used=attempt,
                    execution_results=execution.results,
                )
            except ConfigurationError:
                raise
            except Exception as e:
                logger.error(f"[INFERENCE] attempt {attempt}/{self.max_attempts} failed: {type(e).__name__}: {e}")
                if final:
                    return InferenceResult(
                        success=False,
                        customer_response=TECHNICAL_ISSUE_RESPONSE,
                        iterations_used=attempt,
                        failure_reason=str(e),
                        failure_kind=FailureKind.error,
                    )

        raise InferenceLoopError(f"inference loop exited after {self.max_attempts} attempts without a result")
