"""Wiring for the shared services and the per-conversation object graph."""
from typing import Any, Dict, Optional

from ..agents.execution_agent import ExecutionAgent
from ..agents.inference_loop import InferenceLoop
from ..agents.reasoning_agent import ReasoningAgent
from ..agents.response_agent import ResponseAgent
from ..agents.tool_selection_agent import ToolSelectionAgent
from ..agents.validation_agent import ValidationAgent
from ..data.catalog import ProductCatalog
from ..data.populate_db import populate_products
from ..kernel.client import HttpKernelClient, KernelClient
from ..kernel.simulated import InMemoryKernelClient
from ..schemas.receipt_models import StoreInfo
from ..tools.context import KernelContext
from ..tools.provider import ToolExecutionProvider
from ..utils.logger import get_logger
from ..utils.thought_logger import ThoughtLogger
from .config import Config
from .controller import ChatOrchestrator
from .gateway import ModelGateway
from .prompts import PromptTemplateProvider
from .receipt_sync import ReceiptSynchronizer
from .session import SessionManager

logger = get_logger("factory")


def store_variables(store: StoreInfo, staff_title: str) -> Dict[str, Any]:
    return {"StoreName": store.name, "StaffTitle": staff_title, "CultureCode": store.culture_code}


def build_orchestrator(
    gateway: ModelGateway,
    kernel: KernelClient,
    catalog: ProductCatalog,
    store: StoreInfo,
    auto_add_confidence: float,
    high_confidence: float,
    max_attempts: int,
    personality: str = "kopitiam_uncle",
    staff_title: str = "Uncle",
    terminal_id: str = "AI_TERMINAL",
    operator_id: str = "AI_ASSISTANT",
    prompts: PromptTemplateProvider = None,
    sessions: Optional[SessionManager] = None,
    session_id: str = None,
    disambiguation_timeout_minutes: float = 5.0,
    auto_clear_seconds: Optional[float] = None,
    recent_history_turns: int = 3,
    thoughts: Optional[ThoughtLogger] = None,
) -> ChatOrchestrator:
    """Build one conversation's provider, pipeline stages, synchronizer and orchestrator."""
    prompts = prompts or PromptTemplateProvider()
    variables = store_variables(store, staff_title)

    context = KernelContext(terminal_id, operator_id, store.currency)
    provider = ToolExecutionProvider(
        kernel=kernel,
        catalog=catalog,
        context=context,
        store=store,
        auto_add_confidence=auto_add_confidence,
        high_confidence=high_confidence,
    )
    stage_args = (gateway, prompts, personality, variables)
    loop = InferenceLoop(
        reasoning=ReasoningAgent(*stage_args, provider=provider, thoughts=thoughts),
        selection=ToolSelectionAgent(*stage_args, provider=provider, thoughts=thoughts),
        validation=ValidationAgent(*stage_args, thoughts=thoughts),
        execution=ExecutionAgent(provider),
        response=ResponseAgent(*stage_args, thoughts=thoughts),
        max_attempts=max_attempts,
        thoughts=thoughts,
    )
    return ChatOrchestrator(
        loop=loop,
        provider=provider,
        synchronizer=ReceiptSynchronizer(provider),
        gateway=gateway,
        prompts=prompts,
        store=store,
        personality=personality,
        store_variables=variables,
        session_id=session_id,
        sessions=sessions,
        disambiguation_timeout_minutes=disambiguation_timeout_minutes,
        auto_clear_seconds=auto_clear_seconds,
        recent_history_turns=recent_history_turns,
        thoughts=thoughts,
    )


def build_kernel() -> KernelClient:
    if Config.KERNEL_MODE == "http":
        logger.info(f"[KERNEL] using HTTP kernel at {Config.KERNEL_BASE_URL}")
        return HttpKernelClient(Config.KERNEL_BASE_URL, timeout=Config.KERNEL_TIMEOUT_SECONDS)
    logger.info("[KERNEL] using in-process simulated kernel")
    return InMemoryKernelClient()


class ServiceContainer:
    """Services shared by every conversation, built once from configuration."""

    def __init__(self, gateway: ModelGateway, kernel: KernelClient, catalog: ProductCatalog,
                 sessions: SessionManager, prompts: PromptTemplateProvider = None):
        self.gateway = gateway
        self.kernel = kernel
        self.catalog = catalog
        self.sessions = sessions
        self.prompts = prompts or PromptTemplateProvider()
        self.store = StoreInfo(
            name=Config.STORE_NAME,
            currency=Config.require("STORE_CURRENCY"),
            store_type=Config.STORE_TYPE,
            culture_code=Config.STORE_CULTURE,
        )

    @classmethod
    def from_config(cls) -> "ServiceContainer":
        Config.validate()
        populate_products()
        return cls(
            gateway=ModelGateway.from_config(),
            kernel=build_kernel(),
            catalog=ProductCatalog(),
            sessions=SessionManager(),
        )

    def create_orchestrator(self, session_id: str) -> ChatOrchestrator:
        return build_orchestrator(
            gateway=self.gateway,
            kernel=self.kernel,
            catalog=self.catalog,
            store=self.store,
            auto_add_confidence=Config.require("AUTO_ADD_CONFIDENCE"),
            high_confidence=Config.require("HIGH_CONFIDENCE"),
            max_attempts=Config.require("MAX_INFERENCE_ATTEMPTS"),
            personality=Config.PERSONALITY,
            staff_title=Config.STAFF_TITLE,
            terminal_id=Config.TERMINAL_ID,
            operator_id=Config.OPERATOR_ID,
            prompts=self.prompts,
            sessions=self.sessions,
            session_id=session_id,
            disambiguation_timeout_minutes=Config.DISAMBIGUATION_TIMEOUT_MINUTES,
            auto_clear_seconds=Config.AUTO_CLEAR_SECONDS,
            recent_history_turns=Config.RECENT_HISTORY_TURNS,
            thoughts=ThoughtLogger(interval=Config.THOUGHT_FLUSH_INTERVAL_SECONDS),
        )
