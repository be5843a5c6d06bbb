"""Extract tool invocations from the oracle's free-text reply.

The oracle requests actions by writing lines of the form::

    TOOL_CALL: add_item_to_transaction {"item_description": "Kopi C", "quantity": 2}

Unknown tool names are skipped. Anything else that looks like a tool call but
is not a well-formed JSON object matching the tool's schema raises
``ToolCallParseError``: the prompt contract says the blob is valid JSON, so a
broken one is a defect, not something to guess around.
"""
import json
import re
from typing import Iterable, List

from ..schemas.tool_models import ToolCallExtraction, ToolDefinition, ToolInvocation
from ..utils.logger import get_logger

logger = get_logger("nlu.tool_calls")

TOOL_CALL_MARKER = "TOOL_CALL:"
TOOL_CALL_LINE = re.compile(r"^\s*TOOL_CALL:\s*(?P<name>[^\s{]+)?\s*(?P<args>.*?)\s*$")


class ToolCallParseError(ValueError):
    """The oracle emitted a tool call whose arguments are not a valid JSON object."""


def _parse_arguments(name: str, blob: str) -> dict:
    if not blob:
        raise ToolCallParseError(f"TOOL_CALL for '{name}' has no JSON arguments; use {{}} for none")
    try:
        arguments, end = json.JSONDecoder().raw_decode(blob)
    except json.JSONDecodeError as e:
        raise ToolCallParseError(f"TOOL_CALL for '{name}' has malformed JSON arguments: {e.msg} in {blob!r}") from e
    if blob[end:].strip():
        raise ToolCallParseError(f"TOOL_CALL for '{name}' has trailing text after its JSON arguments: {blob!r}")
    if not isinstance(arguments, dict):
        raise ToolCallParseError(f"TOOL_CALL for '{name}' arguments must be a JSON object, got {type(arguments).__name__}")
    return arguments


def extract_tool_calls(text: str, tools: Iterable[ToolDefinition]) -> ToolCallExtraction:
    """Parse ``TOOL_CALL`` lines out of ``text``.

    Args:
        text: Raw oracle reply
        tools: Tool catalog the reply was produced against

    Returns:
        Extracted invocations plus the reply with marker lines removed

    Raises:
        ToolCallParseError: malformed arguments for a known tool
    """
    catalog = {tool.name: tool for tool in tools}
    invocations: List[ToolInvocation] = []
    skipped: List[str] = []
    kept_lines: List[str] = []

    for line in (text or "").splitlines():
        if not line.lstrip().startswith(TOOL_CALL_MARKER):
            kept_lines.append(line)
            continue

        match = TOOL_CALL_LINE.match(line)
        name = match.group("name") if match else None
        if not name:
            raise ToolCallParseError(f"TOOL_CALL line without a function name: {line.strip()!r}")

        tool = catalog.get(name)
        if tool is None:
            logger.warning(f"[TOOL_CALL] skipping unknown tool '{name}'")
            skipped.append(name)
            continue

        arguments = _parse_arguments(name, match.group("args"))
        problems = tool.validate_arguments(arguments)
        if problems:
            raise ToolCallParseError(f"TOOL_CALL for '{name}' does not match its schema: {'; '.join(problems)}")

        invocations.append(ToolInvocation(
            function_name=name,
            arguments=arguments,
            call_id=f"call_{len(invocations) + 1}",
        ))

    display_text = "\n".join(kept_lines).strip()
    logger.debug(f"[TOOL_CALL] extracted={len(invocations)} skipped={len(skipped)}")
    return ToolCallExtraction(invocations=invocations, display_text=display_text, skipped=skipped)
