"""Pydantic models for the tool catalog and tool invocations."""
from typing import Any, Dict, List

from pydantic import BaseModel, Field

_JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


class ToolDefinition(BaseModel):
    """A named action the oracle may request, described with a JSON-schema-like parameter object."""

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}, "required": []})

    @property
    def properties(self) -> Dict[str, Dict[str, Any]]:
        return self.parameters.get("properties", {})

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required", []))

    def validate_arguments(self, arguments: Dict[str, Any]) -> List[str]:
        """Return a list of problems with ``arguments``; empty means valid.

        Keys the schema does not declare are tolerated so that documented
        aliases (``method`` for ``payment_method``) keep working.
        """
        problems = []
        for key in self.required:
            if key not in arguments:
                problems.append(f"missing required argument '{key}'")

        for key, value in arguments.items():
            rule = self.properties.get(key)
            if rule is None or value is None:
                continue
            expected = rule.get("type")
            allowed = _JSON_TYPES.get(expected)
            # bool is an int subclass; JSON true is never a number here
            if allowed and (not isinstance(value, allowed) or (isinstance(value, bool) and expected != "boolean")):
                problems.append(f"argument '{key}' should be {expected}, got {type(value).__name__}")
                continue
            if "minimum" in rule and isinstance(value, (int, float)) and value < rule["minimum"]:
                problems.append(f"argument '{key}' must be >= {rule['minimum']}")
            if "maximum" in rule and isinstance(value, (int, float)) and value > rule["maximum"]:
                problems.append(f"argument '{key}' must be <= {rule['maximum']}")
        return problems

    def summary_line(self) -> str:
        return f"- {self.name}: {self.description}"


class ToolInvocation(BaseModel):
    function_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    call_id: str = ""


class ToolCallExtraction(BaseModel):
    invocations: List[ToolInvocation] = Field(default_factory=list)
    display_text: str = ""
    skipped: List[str] = Field(default_factory=list)
