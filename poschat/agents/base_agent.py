"""BaseAgent interface for the inference pipeline stages."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..app.gateway import ModelGateway
from ..app.prompts import PromptTemplateProvider
from ..utils.thought_logger import ThoughtLogger


class BaseAgent(ABC):
    """One oracle-backed stage. Subclasses render a template and make at most one gateway call."""

    name: str = "base"
    template: str = ""

    def __init__(
        self,
        gateway: ModelGateway,
        prompts: PromptTemplateProvider,
        personality: str,
        store_variables: Dict[str, Any],
        thoughts: Optional[ThoughtLogger] = None,
    ):
        self.gateway = gateway
        self.prompts = prompts
        self.personality = personality
        self.store_variables = dict(store_variables)
        self.thoughts = thoughts

    @abstractmethod
    def run(self, *args, **kwargs):
        ...

    def _render(self, **variables) -> str:
        merged = dict(self.store_variables)
        merged.update(variables)
        return self.prompts.render(self.personality, self.template, merged)

    def _think(self, thought: str) -> None:
        if self.thoughts is not None:
            self.thoughts.log_thought(f"[{self.name}] {thought}")
