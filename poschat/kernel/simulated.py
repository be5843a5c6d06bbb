"""In-process kernel used for local runs and tests.

Behaves like the real service for everything the chat layer touches: one
transaction per call to ``start_transaction``, line numbers that are never
reused, and a transaction that completes once tenders cover the total.
"""
import threading
import uuid
from typing import Dict

from ..schemas.kernel_models import (
    KernelLineItem,
    KernelSession,
    KernelTransaction,
    KernelTransactionState,
)
from ..utils.logger import get_logger
from .client import KernelClient, KernelRequestError

logger = get_logger("kernel.simulated")


class InMemoryKernelClient(KernelClient):

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, KernelSession] = {}
        self._transactions: Dict[str, KernelTransaction] = {}
        self._next_line: Dict[str, int] = {}

    def _session(self, session_id: str) -> KernelSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise KernelRequestError(f"Unknown session {session_id}")
        return session

    def _open_transaction(self, session_id: str, transaction_id: str) -> KernelTransaction:
        self._session(session_id)
        txn = self._transactions.get(transaction_id)
        if txn is None:
            raise KernelRequestError(f"Unknown transaction {transaction_id}")
        return txn

    def _mutable(self, session_id: str, transaction_id: str) -> KernelTransaction:
        txn = self._open_transaction(session_id, transaction_id)
        if txn.state != KernelTransactionState.building:
            raise KernelRequestError(f"Transaction {transaction_id} is {txn.state.value} and cannot be changed")
        return txn

    @staticmethod
    def _recalculate(txn: KernelTransaction) -> None:
        for line in txn.line_items:
            line.extended_price = round(line.unit_price * line.quantity, 2)
        txn.total = round(sum(line.extended_price for line in txn.line_items), 2)

    @staticmethod
    def _find_line(txn: KernelTransaction, line_number: int) -> KernelLineItem:
        for line in txn.line_items:
            if line.line_number == line_number:
                return line
        raise KernelRequestError(f"Line item {line_number} not found in transaction {txn.transaction_id}")

    def create_session(self, terminal_id: str, operator_id: str) -> KernelSession:
        with self._lock:
            session = KernelSession(session_id=uuid.uuid4().hex, terminal_id=terminal_id, operator_id=operator_id)
            self._sessions[session.session_id] = session
            logger.info(f"[KERNEL] session {session.session_id[:8]} opened for {terminal_id}/{operator_id}")
            return session.model_copy()

    def start_transaction(self, session_id: str, currency: str) -> KernelTransaction:
        if not currency:
            raise KernelRequestError("Currency is required to start a transaction")
        with self._lock:
            self._session(session_id)
            txn = KernelTransaction(transaction_id=uuid.uuid4().hex, currency=currency)
            self._transactions[txn.transaction_id] = txn
            self._next_line[txn.transaction_id] = 1
            return txn.model_copy(deep=True)

    def add_line_item(self, session_id, transaction_id, sku, quantity, unit_price, parent_line_item_id=None):
        if quantity < 1:
            raise KernelRequestError("Quantity must be at least 1")
        if unit_price < 0:
            raise KernelRequestError("Unit price cannot be negative")
        with self._lock:
            txn = self._mutable(session_id, transaction_id)
            if parent_line_item_id and not any(l.line_item_id == parent_line_item_id for l in txn.line_items):
                raise KernelRequestError(f"Parent line item {parent_line_item_id} not found")
            number = self._next_line[transaction_id]
            self._next_line[transaction_id] = number + 1
            txn.line_items.append(KernelLineItem(
                line_item_id=f"{transaction_id[:8]}-L{number:04d}",
                line_number=number,
                product_sku=sku,
                quantity=quantity,
                unit_price=unit_price,
                extended_price=0.0,
                parent_line_item_id=parent_line_item_id,
            ))
            self._recalculate(txn)
            return txn.model_copy(deep=True)

    def void_line_item(self, session_id, transaction_id, line_number):
        with self._lock:
            txn = self._mutable(session_id, transaction_id)
            line = self._find_line(txn, line_number)
            # Modifiers go with their parent
            txn.line_items = [
                l for l in txn.line_items
                if l.line_item_id != line.line_item_id and l.parent_line_item_id != line.line_item_id
            ]
            self._recalculate(txn)
            return txn.model_copy(deep=True)

    def update_line_item_quantity(self, session_id, transaction_id, line_number, quantity):
        if quantity < 1:
            raise KernelRequestError("Quantity must be at least 1; void the line instead")
        with self._lock:
            txn = self._mutable(session_id, transaction_id)
            self._find_line(txn, line_number).quantity = quantity
            self._recalculate(txn)
            return txn.model_copy(deep=True)

    def get_transaction(self, session_id, transaction_id):
        with self._lock:
            return self._open_transaction(session_id, transaction_id).model_copy(deep=True)

    def process_payment(self, session_id, transaction_id, amount, method):
        if amount <= 0:
            raise KernelRequestError("Payment amount must be positive")
        with self._lock:
            txn = self._mutable(session_id, transaction_id)
            if not txn.line_items:
                raise KernelRequestError("Cannot tender against an empty transaction")
            txn.tendered = round(txn.tendered + amount, 2)
            if txn.tendered >= txn.total:
                txn.change_due = round(txn.tendered - txn.total, 2)
                txn.state = KernelTransactionState.completed
            logger.info(f"[KERNEL] {method} tender {amount:.2f} on {transaction_id[:8]} -> {txn.state.value}")
            return txn.model_copy(deep=True)

    def close_session(self, session_id):
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise KernelRequestError(f"Unknown session {session_id}")

    def session_count(self) -> int:
        return len(self._sessions)
