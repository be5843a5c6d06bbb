"""Payment state machine that gates the orchestrator's handling path.

Ordering -> ReadyForPayment -> PaymentMethodRequested -> Completed, and back
to Ordering only through ``reset()``.
"""
from enum import Enum
from typing import Optional

from ..schemas.receipt_models import PaymentStatus
from ..utils.logger import get_logger

logger = get_logger("payment_state")


class PaymentState(str, Enum):
    ordering = "Ordering"
    ready_for_payment = "ReadyForPayment"
    payment_method_requested = "PaymentMethodRequested"
    completed = "Completed"


_ORDER = [
    PaymentState.ordering,
    PaymentState.ready_for_payment,
    PaymentState.payment_method_requested,
    PaymentState.completed,
]


class InvalidTransitionError(RuntimeError):
    """A transition would move the payment state backwards."""


class PaymentStateMachine:
    def __init__(self):
        self.state = PaymentState.ordering
        self.payment_method: Optional[str] = None

    def _advance(self, target: PaymentState) -> None:
        if target == self.state:
            return
        if _ORDER.index(target) < _ORDER.index(self.state):
            raise InvalidTransitionError(f"cannot move from {self.state.value} to {target.value}; use reset()")
        logger.info(f"[WORKFLOW] payment state {self.state.value} -> {target.value}")
        self.state = target

    def transition_to_ready_for_payment(self) -> None:
        self._advance(PaymentState.ready_for_payment)

    def mark_payment_method_requested(self) -> None:
        self._advance(PaymentState.payment_method_requested)

    def set_payment_method(self, method: str) -> None:
        self.payment_method = (method or "").strip().lower() or None

    def complete_payment(self) -> None:
        self._advance(PaymentState.completed)

    def reset(self) -> None:
        """Back to Ordering for the next customer. Only the orchestrator calls this."""
        logger.info(f"[WORKFLOW] payment state reset from {self.state.value}")
        self.state = PaymentState.ordering
        self.payment_method = None

    def apply_receipt_status(self, status: PaymentStatus) -> None:
        """Catch up with the receipt when the kernel is ahead of local state."""
        if self.state == PaymentState.completed:
            return
        if status == PaymentStatus.completed:
            self._advance(PaymentState.completed)
        elif status == PaymentStatus.ready_for_payment and self.state == PaymentState.ordering:
            self._advance(PaymentState.ready_for_payment)

    @property
    def is_completed(self) -> bool:
        return self.state == PaymentState.completed

    @property
    def is_payment_due(self) -> bool:
        return self.state in (PaymentState.ready_for_payment, PaymentState.payment_method_requested)

    def should_ask_for_payment_method(self) -> bool:
        return self.state == PaymentState.ready_for_payment and self.payment_method is None

    def should_process_payment(self) -> bool:
        return self.is_payment_due and self.payment_method is not None
