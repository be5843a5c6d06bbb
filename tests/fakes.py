"""Shared test doubles: a scripted model gateway and an in-memory catalog."""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from sqlalchemy.orm import sessionmaker

from poschat.app.gateway import ModelGateway, ModelGatewayError
from poschat.data.catalog import ProductCatalog
from poschat.data.database import make_engine
from poschat.data.populate_db import populate_products
from poschat.kernel.simulated import InMemoryKernelClient
from poschat.schemas.receipt_models import StoreInfo
from poschat.tools.context import KernelContext
from poschat.tools.provider import ToolExecutionProvider

AUTO_ADD = 0.8
HIGH = 0.9

# Phrases that identify which template a prompt was rendered from
STAGE_MARKERS = [
    ("validation", "independent reviewer"),
    ("tool_selection", "Decide which tools to call"),
    ("reasoning", "Explain in plain words"),
    ("response", "Reply to the customer"),
    ("greeting", "Greet the customer"),
    ("order_summary", "Read back the order"),
    ("post_payment", "Thank the customer"),
    ("next_customer", "Call the next customer"),
    ("error_apology", "Apologise briefly"),
]


def stage_of(prompt: str) -> str:
    for stage, marker in STAGE_MARKERS:
        if marker in prompt:
            return stage
    return "unknown"


class ScriptedGateway(ModelGateway):
    """Real gateway (prompt checks, extractor) whose model replies come from a script.

    ``replies`` is a list consumed in order; an Exception in the list is raised.
    ``by_stage`` maps a stage name to a reply string, a list of replies, or a callable
    taking the prompt.
    """

    def __init__(self, replies=None, by_stage=None):
        super().__init__(api_key="test-key", model="test-model", base_url="http://llm.test/v1/chat/completions", timeout=5)
        self.replies = list(replies or [])
        self.by_stage = dict(by_stage or {})
        self.prompts = []
        self.system_messages = []

    def stages(self):
        return [stage_of(p) for p in self.prompts]

    def _complete(self, messages):
        self.system_messages.append(messages[0]["content"])
        prompt = messages[-1]["content"]
        self.prompts.append(prompt)

        stage = stage_of(prompt)
        if stage in self.by_stage:
            reply = self.by_stage[stage]
            if isinstance(reply, list):
                reply = reply.pop(0) if len(reply) > 1 else reply[0]
            if callable(reply):
                reply = reply(prompt)
        elif self.replies:
            reply = self.replies.pop(0)
        else:
            raise ModelGatewayError(f"no scripted reply for {stage} prompt")

        if isinstance(reply, Exception):
            raise reply
        return reply


def build_catalog() -> ProductCatalog:
    """Catalog over a fresh in-memory SQLite database seeded from the bundled menu."""
    engine = make_engine("sqlite://")
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    populate_products(session_factory=factory, bind=engine)
    return ProductCatalog(factory)


def build_store() -> StoreInfo:
    return StoreInfo(name="Toast Boleh", currency="SGD", store_type="kopitiam", culture_code="en-SG")


def build_provider(kernel=None, catalog=None, auto_add=AUTO_ADD, high=HIGH) -> ToolExecutionProvider:
    store = build_store()
    return ToolExecutionProvider(
        kernel=kernel or InMemoryKernelClient(),
        catalog=catalog or build_catalog(),
        context=KernelContext("TEST_TERMINAL", "TEST_OPERATOR", store.currency),
        store=store,
        auto_add_confidence=auto_add,
        high_confidence=high,
    )
