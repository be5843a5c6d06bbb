"""Per-attempt records threaded through one run of the inference loop."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .tool_models import ToolInvocation


class ReasoningResult(BaseModel):
    reasoning: str
    summary: str
    attempt: int


class ToolSelectionResult(BaseModel):
    invocations: List[ToolInvocation] = Field(default_factory=list)
    justification: str = ""


class ValidationDecision(str, Enum):
    approved = "APPROVED"
    rejected = "REJECTED"


class ValidationVerdict(BaseModel):
    """Typed decision coerced out of the reviewer's free text."""

    decision: ValidationDecision
    rationale: str = ""


class ValidationResult(BaseModel):
    verdict: ValidationVerdict
    feedback: str = ""
    review_text: str = ""

    @property
    def approved(self) -> bool:
        return self.verdict.decision == ValidationDecision.approved


class ExecutionResult(BaseModel):
    tools_executed: List[str] = Field(default_factory=list)
    results: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class FailureKind(str, Enum):
    validation_exhausted = "validation_exhausted"
    error = "error"


class InferenceResult(BaseModel):
    success: bool
    customer_response: str
    tools_executed: List[str] = Field(default_factory=list)
    iterations_used: int = 0
    failure_reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    execution_results: List[str] = Field(default_factory=list)
