"""Chat orchestrator: one customer turn from utterance to reply.

Each turn runs under a lock. Cheap structural rules decide whether the turn is
a payment, an end-of-order summary, or something for the inference loop; the
receipt is re-read from the kernel whenever a tool ran.
"""
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..agents.inference_loop import InferenceLoop
from ..kernel.client import KernelError
from ..nlu.rules import CUSTOMER, OrderIntent, analyze_order_intent
from ..nlu.tool_call_parser import ToolCallParseError
from ..schemas.inference_models import FailureKind, InferenceResult
from ..schemas.kernel_models import KernelTransactionState
from ..schemas.io_models import ConversationTurn
from ..schemas.receipt_models import Receipt, ReceiptChange, StoreInfo
from ..schemas.tool_models import ToolInvocation
from ..tools import definitions as tools
from ..tools.provider import ToolExecutionProvider
from ..utils.formatting import format_currency
from ..utils.logger import get_logger
from ..utils.thought_logger import ThoughtLogger
from .gateway import ModelGateway, ModelGatewayError
from .payment_state import PaymentState, PaymentStateMachine
from .prompts import PromptTemplateProvider
from .receipt_sync import ReceiptSynchronizer
from .session import SessionManager

logger = get_logger("controller")

TECHNICAL_FALLBACK = "Sorry, something went wrong on my side. Could you say that again?"
NEXT_CUSTOMER_FALLBACK = "Next customer! What you want?"
CLARIFICATION_HINT = (
    "You just showed the customer a list of options. Their reply is most likely a choice from that list: "
    "use context='clarification_response' and confidence 0.8 or higher for add_item_to_transaction."
)
PAYMENT_DUE_HINT = "The order has been read back and payment is due."

_MENU_TOOLS = {tools.SEARCH_PRODUCTS, tools.LOAD_MENU_CONTEXT, tools.GET_POPULAR_ITEMS}


class ConversationState(str, Enum):
    initial = "Initial"
    awaiting_disambiguation_choice = "AwaitingDisambiguationChoice"
    showing_menu_options = "ShowingMenuOptions"
    ready_for_payment = "ReadyForPayment"
    processing_payment = "ProcessingPayment"


class ChatOrchestrator:
    """Coordinates one conversation at one till."""

    def __init__(
        self,
        loop: InferenceLoop,
        provider: ToolExecutionProvider,
        synchronizer: ReceiptSynchronizer,
        gateway: ModelGateway,
        prompts: PromptTemplateProvider,
        store: StoreInfo,
        personality: str,
        store_variables: Dict[str, Any],
        session_id: str = None,
        sessions: Optional[SessionManager] = None,
        payment_state: Optional[PaymentStateMachine] = None,
        disambiguation_timeout_minutes: float = 5.0,
        auto_clear_seconds: Optional[float] = None,
        recent_history_turns: int = 3,
        thoughts: Optional[ThoughtLogger] = None,
    ):
        self.loop = loop
        self.provider = provider
        self.synchronizer = synchronizer
        self.gateway = gateway
        self.prompts = prompts
        self.store = store
        self.personality = personality
        self.store_variables = dict(store_variables)
        self.staff_name = self.store_variables.get("StaffTitle") or "Cashier"
        self.session_id = session_id
        self.sessions = sessions
        self.payment_state = payment_state or PaymentStateMachine()
        self.disambiguation_timeout = timedelta(minutes=disambiguation_timeout_minutes)
        self.auto_clear_seconds = auto_clear_seconds
        self.recent_history_turns = recent_history_turns
        self.thoughts = thoughts

        self.receipt = Receipt(store=store)
        self.history: List[ConversationTurn] = []
        self.conversation_state = ConversationState.initial
        self.last_disambiguation_time: Optional[datetime] = None
        self.payment_methods_context = ""
        self._turn_lock = threading.RLock()
        self._clear_timer: Optional[threading.Timer] = None
        # Bumped whenever a pending auto-clear is cancelled or rescheduled
        self._clear_generation = 0

    # Lifecycle

    def initialize(self) -> str:
        """Load menu and payment context, then greet the first customer."""
        with self._turn_lock:
            self._warm(tools.LOAD_MENU_CONTEXT, {"include_categories": True})
            self.payment_methods_context = self._warm(tools.LOAD_PAYMENT_METHODS_CONTEXT, {"include_details": True})
            greeting = self._oracle_text(
                "greeting",
                {"CurrentTime": datetime.now().strftime("%H:%M")},
                fallback=f"Welcome to {self.store.name}! How can I help you today?",
            )
            self._append(self.staff_name, greeting, system=True)
            logger.info(f"[WORKFLOW] orchestrator ready for {self.store.name}")
            return greeting

    def subscribe_receipt_changes(self, callback: Callable[[ReceiptChange], None]) -> None:
        self.synchronizer.subscribe(callback)

    def prepare_next_customer(self) -> str:
        """Reset payment state and receipt for a new customer and greet them."""
        with self._turn_lock:
            self._reset_for_next_customer()
            greeting = self._oracle_text("next_customer", {}, fallback=NEXT_CUSTOMER_FALLBACK)
            self._append(self.staff_name, greeting, system=True)
            return greeting

    def _reset_for_next_customer(self) -> None:
        self._cancel_clear_timer()
        self.payment_state.reset()
        self.provider.reset_transaction()
        self.receipt = Receipt(store=self.store)
        self.synchronizer.clear(self.receipt, context="next customer")
        self.conversation_state = ConversationState.initial
        self.last_disambiguation_time = None
        logger.info(f"[WORKFLOW] ready for next customer, receipt {self.receipt.transaction_id}")

    def shutdown(self) -> None:
        with self._turn_lock:
            self._cancel_clear_timer()
            try:
                self.provider.close()
            except KernelError as e:
                logger.warning(f"[KERNEL] session close failed: {e}")
            if self.thoughts is not None:
                self.thoughts.close()

    # Turn handling

    def process_user_input(self, text: str) -> str:
        """
        Handle one customer utterance.

        Args:
            text: What the customer said

        Returns:
            The reply to show the customer
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("customer input must not be empty")

        with self._turn_lock:
            logger.info(f"[WORKFLOW] 1. customer: '{text}' payment={self.payment_state.state.value}")
            try:
                reply = self._handle(text)
            except (ModelGatewayError, ToolCallParseError, KernelError) as e:
                logger.error(f"[WORKFLOW] turn failed: {type(e).__name__}: {e}")
                reply = self._apology(text, TECHNICAL_FALLBACK)
            self._append(CUSTOMER, text)
            self._append(self.staff_name, reply)
            return reply

    def _handle(self, text: str) -> str:
        if self.payment_state.is_completed:
            # Paid and waiting for auto-clear: whoever speaks now is the next customer
            self._reset_for_next_customer()

        analysis = analyze_order_intent(text, self.receipt, self.history)
        logger.info(f"[WORKFLOW] 2. intent {analysis.intent.value}: {analysis.reasoning}")
        if self.thoughts is not None:
            self.thoughts.log_decision(analysis.intent.value, analysis.reasoning)

        has_items = bool(self.receipt.items)
        method = analysis.payment_method
        if has_items and method and not self.payment_state.is_completed:
            logger.info(f"[WORKFLOW] 3. direct payment via {method}")
            reply = self._direct_payment(method)
            if reply is not None:
                return reply

        if (
            analysis.intent == OrderIntent.ready_for_payment
            and has_items
            and self.payment_state.state == PaymentState.ordering
        ):
            logger.info("[WORKFLOW] 3. order complete, asking for payment")
            return self._order_summary()

        hint = CLARIFICATION_HINT if self._awaiting_choice() else ""
        if self.payment_state.is_payment_due:
            hint = "\n".join(part for part in (hint, PAYMENT_DUE_HINT, self.payment_methods_context) if part)
        result = self.loop.run(text, self._transaction_state(), history=self._recent_history(), hint=hint)
        return self._after_inference(text, result)

    def _after_inference(self, text: str, result: InferenceResult) -> str:
        logger.info(
            f"[WORKFLOW] 4. inference success={result.success} iterations={result.iterations_used} "
            f"tools={result.tools_executed}"
        )
        reply = result.customer_response
        if result.failure_kind == FailureKind.error:
            reply = self._apology(text, result.customer_response)

        if result.tools_executed or result.failure_kind == FailureKind.error:
            self._update_conversation_state(result)
            self._sync(f"after: {text}")
            if tools.PROCESS_PAYMENT in result.tools_executed and self._kernel_accepted_payment():
                self.payment_state.complete_payment()
            if self.payment_state.is_completed:
                reply = self._finish_transaction(reply)
        return reply

    def _direct_payment(self, method: str) -> Optional[str]:
        """Pay with a method the customer named. Returns None when the kernel did not complete the sale."""
        self.payment_state.set_payment_method(method)
        self.conversation_state = ConversationState.processing_payment
        result = self.provider.execute(ToolInvocation(
            function_name=tools.PROCESS_PAYMENT,
            arguments={"payment_method": method},
        ))
        self._sync(f"payment via {method}")
        if not self._kernel_accepted_payment():
            logger.info(f"[WORKFLOW] direct payment not completed: {result}")
            self.conversation_state = ConversationState.ready_for_payment
            return None

        self.payment_state.complete_payment()
        thanks = self._oracle_text("post_payment", {"PaymentResult": result}, fallback=result)
        return self._finish_transaction(thanks)

    def _order_summary(self) -> str:
        self.payment_state.transition_to_ready_for_payment()
        self.conversation_state = ConversationState.ready_for_payment
        self._sync("order complete")
        verification = self.provider.execute(ToolInvocation(function_name=tools.VERIFY_ORDER, arguments={}))
        methods = self.provider.execute(ToolInvocation(
            function_name=tools.LOAD_PAYMENT_METHODS_CONTEXT,
            arguments={"include_details": False},
        ))
        summary = self._oracle_text(
            "order_summary",
            {"OrderDetails": verification, "PaymentMethods": methods, "Total": self._money(self.receipt.total)},
            fallback=f"{verification}\n\nHow would you like to pay?",
        )
        self.payment_state.mark_payment_method_requested()
        return summary

    def _finish_transaction(self, reply: str) -> str:
        if self.auto_clear_seconds:
            self._schedule_clear()
            return reply
        self._reset_for_next_customer()
        greeting = self._oracle_text("next_customer", {}, fallback=NEXT_CUSTOMER_FALLBACK)
        return f"{reply}\n\n{greeting}"

    # Helpers

    def _sync(self, context: str) -> None:
        change = self.synchronizer.synchronize(
            self.receipt,
            ready_for_payment=self.payment_state.is_payment_due,
            context=context,
        )
        if change is not None:
            self.payment_state.apply_receipt_status(self.receipt.status)

    def _update_conversation_state(self, result: InferenceResult) -> None:
        executed = set(result.tools_executed)
        if any("DISAMBIGUATION_NEEDED" in r for r in result.execution_results):
            self.conversation_state = ConversationState.awaiting_disambiguation_choice
            self.last_disambiguation_time = datetime.now()
        elif tools.PROCESS_PAYMENT in executed:
            self.conversation_state = ConversationState.processing_payment
        elif tools.LOAD_PAYMENT_METHODS_CONTEXT in executed:
            self.conversation_state = ConversationState.ready_for_payment
        elif executed & _MENU_TOOLS:
            self.conversation_state = ConversationState.showing_menu_options
        else:
            self.conversation_state = ConversationState.initial
        logger.debug(f"[WORKFLOW] conversation state {self.conversation_state.value}")

    def _awaiting_choice(self) -> bool:
        return (
            self.conversation_state == ConversationState.awaiting_disambiguation_choice
            and self.last_disambiguation_time is not None
            and datetime.now() - self.last_disambiguation_time < self.disambiguation_timeout
        )

    def _transaction_state(self) -> str:
        if not self.receipt.items:
            return f"{self.receipt.status.value}: empty order"
        return (
            f"{self.receipt.status.value}: {self.receipt.item_count} items, "
            f"total {self._money(self.receipt.total)}, payment {self.payment_state.state.value}"
        )

    def _recent_history(self) -> List[ConversationTurn]:
        return self.history[-self.recent_history_turns:] if self.recent_history_turns > 0 else []

    def _append(self, sender: str, text: str, system: bool = False) -> None:
        turn = ConversationTurn(sender=sender, text=text, is_system_generated=system)
        self.history.append(turn)
        if self.sessions is not None and self.session_id:
            self.sessions.add_turn(self.session_id, turn)

    def _money(self, amount: float) -> str:
        return format_currency(amount, self.store.currency)

    def _kernel_accepted_payment(self) -> bool:
        paid = self.provider.last_payment
        return paid is not None and paid.state == KernelTransactionState.completed

    def _warm(self, tool_name: str, arguments: Dict[str, Any]) -> str:
        """Run a context tool once; an unavailable context is logged and left blank."""
        result = self.provider.execute(ToolInvocation(function_name=tool_name, arguments=arguments))
        if result.startswith("ERROR"):
            logger.warning(f"[WORKFLOW] {tool_name} unavailable: {result}")
            return ""
        return result

    def _oracle_text(self, template: str, variables: Dict[str, Any], fallback: str) -> str:
        merged = dict(self.store_variables)
        merged.update(variables)
        prompt = self.prompts.render(self.personality, template, merged)
        try:
            text = self.gateway.call(prompt, tools=None, context={"store_name": self.store.name}).text.strip()
        except ModelGatewayError as e:
            logger.warning(f"[WORKFLOW] {template} message from model failed, using fallback: {e}")
            return fallback
        return text or fallback

    def _apology(self, text: str, fallback: str) -> str:
        """Best-effort apology from the model; any failure falls back to the neutral text."""
        try:
            merged = dict(self.store_variables)
            merged["CustomerInput"] = text
            prompt = self.prompts.render(self.personality, "error_apology", merged)
            apology = self.gateway.call(prompt, tools=None).text.strip()
        except Exception as e:
            logger.warning(f"[WORKFLOW] apology generation failed: {e}")
            return fallback
        return apology or fallback

    def _schedule_clear(self) -> None:
        self._cancel_clear_timer()
        self._clear_timer = threading.Timer(self.auto_clear_seconds, self._auto_clear, args=(self._clear_generation,))
        self._clear_timer.daemon = True
        self._clear_timer.start()
        logger.info(f"[WORKFLOW] receipt clears in {self.auto_clear_seconds}s")

    def _auto_clear(self, generation: int) -> None:
        with self._turn_lock:
            if generation != self._clear_generation:
                logger.info("[WORKFLOW] auto-clear superseded, till already reset")
                return
            try:
                self.prepare_next_customer()
            except Exception as e:
                logger.error(f"[WORKFLOW] auto-clear failed: {e}")

    def _cancel_clear_timer(self) -> None:
        self._clear_generation += 1
        if self._clear_timer is not None:
            self._clear_timer.cancel()
            self._clear_timer = None
