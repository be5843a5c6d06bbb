"""Execution stage: run approved invocations one by one."""
from typing import List

from ..app.config import ConfigurationError
from ..schemas.inference_models import ExecutionResult
from ..schemas.tool_models import ToolInvocation
from ..tools.provider import ToolExecutionProvider
from ..utils.logger import get_logger

logger = get_logger("agents.execution")


class ExecutionAgent:
    """Runs each call independently; a failing call never stops the ones after it. Nothing is rolled back."""

    name = "execution"

    def __init__(self, provider: ToolExecutionProvider):
        self.provider = provider

    def run(self, invocations: List[ToolInvocation]) -> ExecutionResult:
        result = ExecutionResult()
        for invocation in invocations:
            name = invocation.function_name
            try:
                output = self.provider.execute(invocation)
            except ConfigurationError:
                raise
            except Exception as e:
                message = f"Tool {name} failed: {e}"
                logger.error(f"[INFERENCE] {message}")
                result.errors.append(message)
                result.results.append(message)
                continue
            result.tools_executed.append(name)
            result.results.append(output)
        logger.info(f"[INFERENCE] executed {len(result.tools_executed)} tools, {len(result.errors)} errors")
        return result
