#!/usr/bin/env python3
"""
Model gateway for the POS chat pipeline.

Sends one prompt to an OpenAI-compatible chat-completions endpoint, with the
store context and tool catalog injected as JSON in the system message, and
returns the reply text plus any tool calls it contains.
"""

import json
import time
from typing import Any, Dict, List, Optional, Sequence

import requests
from pydantic import BaseModel, Field

from .. import __version__
from ..nlu.tool_call_parser import TOOL_CALL_MARKER, extract_tool_calls
from ..schemas.tool_models import ToolDefinition, ToolInvocation
from ..utils.logger import get_logger
from ..utils.security import AuditLogger, sanitize_prompt
from .config import Config, ConfigurationError

logger = get_logger("gateway")


class ModelGatewayError(RuntimeError):
    """The language model could not produce a reply."""


class GatewayResponse(BaseModel):
    text: str
    raw_text: str
    tool_calls: List[ToolInvocation] = Field(default_factory=list)


TOOL_CALL_CONVENTION = (
    f"To use a tool, write a line of the form\n"
    f"{TOOL_CALL_MARKER} <function_name> <json_object_of_arguments>\n"
    f"Use {{}} when a tool takes no arguments. Write one line per call."
)


class ModelGateway:
    """Client for the chat-completions API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        timeout: Optional[float],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        rate_limit_retries: int = 2,
        http: requests.Session = None,
        audit: AuditLogger = None,
    ):
        if timeout is None:
            raise ConfigurationError(
                "DESIGN DEFICIENCY: LLM_TIMEOUT_SECONDS is not configured; model calls need an explicit timeout"
            )
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.rate_limit_retries = rate_limit_retries
        self.http = http or requests.Session()
        self.audit = audit or AuditLogger()

    @classmethod
    def from_config(cls) -> "ModelGateway":
        return cls(
            api_key=Config.require("LLM_API_KEY"),
            model=Config.LLM_MODEL,
            base_url=Config.LLM_BASE_URL,
            timeout=Config.require("LLM_TIMEOUT_SECONDS"),
            temperature=Config.LLM_TEMPERATURE,
            max_tokens=Config.LLM_MAX_TOKENS,
            rate_limit_retries=Config.LLM_RATE_LIMIT_RETRIES,
        )

    def call(
        self,
        prompt: str,
        tools: Sequence[ToolDefinition] = None,
        context: Dict[str, Any] = None,
    ) -> GatewayResponse:
        """
        Send one prompt to the model.

        Args:
            prompt: Rendered prompt text
            tools: Tools the model may call (may be empty)
            context: Extra structured context for the system message

        Returns:
            Reply text with tool-call lines removed, the raw reply and the parsed calls

        Raises:
            ValueError: empty prompt
            ModelGatewayError: transport or backend failure
            ToolCallParseError: malformed tool call in the reply
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")
        tools = list(tools or [])

        messages = [
            {"role": "system", "content": self._system_message(tools, context)},
            {"role": "user", "content": sanitize_prompt(prompt)},
        ]

        started = time.monotonic()
        try:
            raw_text = self._complete(messages)
        except ModelGatewayError as e:
            self.audit.log_model_interaction(prompt, False, (time.monotonic() - started) * 1000, error=str(e))
            raise
        self.audit.log_model_interaction(prompt, True, (time.monotonic() - started) * 1000)
        logger.debug(f"[WORKFLOW] model reply ({len(raw_text)} chars)")

        if not tools:
            return GatewayResponse(text=raw_text.strip(), raw_text=raw_text)

        extraction = extract_tool_calls(raw_text, tools)
        return GatewayResponse(text=extraction.display_text, raw_text=raw_text, tool_calls=extraction.invocations)

    def _system_message(self, tools: List[ToolDefinition], context: Optional[Dict[str, Any]]) -> str:
        parts = ["You are the language model behind a point-of-sale chat assistant."]
        if context:
            parts.append("CONTEXT:\n" + json.dumps(context, default=str, indent=2))
        if tools:
            schema = [tool.model_dump() for tool in tools]
            parts.append("TOOLS:\n" + json.dumps(schema, indent=2))
            parts.append(TOOL_CALL_CONVENTION)
        return "\n\n".join(parts)

    def _complete(self, messages: List[Dict[str, str]]) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "User-Agent": f"poschat/{__version__}",
        }

        attempt = 0
        while True:
            try:
                response = self.http.post(self.base_url, json=payload, headers=headers, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise ModelGatewayError(f"Error calling language model: {e}") from e

            if response.status_code == 429 and attempt < self.rate_limit_retries:
                attempt += 1
                delay = _retry_after(response)
                logger.warning(f"[WORKFLOW] rate limited, retry {attempt}/{self.rate_limit_retries} in {delay:.1f}s")
                time.sleep(delay)
                continue
            break

        if response.status_code != 200:
            raise ModelGatewayError(
                f"Language model returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ModelGatewayError(f"Error parsing language model response: {e}") from e
        if content is None:
            raise ModelGatewayError("Language model response has no content")
        return content


def _retry_after(response) -> float:
    try:
        return max(0.0, float(response.headers.get("Retry-After", 1)))
    except (TypeError, ValueError):
        return 1.0
