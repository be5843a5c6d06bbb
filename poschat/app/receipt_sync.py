"""
Receipt synchronization.

The receipt is never edited from deltas. After a turn that touched the kernel,
the synchronizer reads the kernel's transaction and rebuilds the receipt's
items, tax and status from it, then tells every subscriber.
"""
from typing import Callable, Dict, List, Optional

from ..kernel.client import KernelError
from ..schemas.kernel_models import KernelTransaction, KernelTransactionState
from ..schemas.receipt_models import (
    PaymentStatus,
    Receipt,
    ReceiptChange,
    ReceiptChangeType,
    ReceiptLineItem,
)
from ..tools.provider import ToolExecutionProvider
from ..utils.logger import get_logger

logger = get_logger("receipt_sync")

ReceiptSubscriber = Callable[[ReceiptChange], None]

TAX_EPSILON = 1e-9


class ReceiptSynchronizer:
    """Sole writer of ``Receipt.status``, items and tax."""

    def __init__(self, provider: ToolExecutionProvider):
        self.provider = provider
        self._names: Dict[str, str] = {}
        self._subscribers: List[ReceiptSubscriber] = []

    def subscribe(self, callback: ReceiptSubscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: ReceiptSubscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def notify(self, change: ReceiptChange) -> None:
        for callback in list(self._subscribers):
            try:
                callback(change)
            except Exception as e:
                logger.error(f"[RECEIPT] subscriber {getattr(callback, '__name__', callback)} failed: {e}")

    def product_name(self, sku: str) -> str:
        if sku not in self._names:
            name = self.provider.lookup_product_name(sku)
            if name is None:
                logger.warning(f"[RECEIPT] no catalog name for {sku}, showing SKU")
                return sku
            self._names[sku] = name
        return self._names[sku]

    def clear(self, receipt: Receipt, context: str = None) -> ReceiptChange:
        receipt.items = []
        receipt.tax = 0.0
        receipt.status = PaymentStatus.building
        change = ReceiptChange(change_type=ReceiptChangeType.cleared, receipt=receipt.model_copy(deep=True), context=context)
        self.notify(change)
        return change

    def synchronize(self, receipt: Receipt, ready_for_payment: bool = False, context: str = None) -> Optional[ReceiptChange]:
        """
        Rebuild ``receipt`` from the kernel.

        Args:
            receipt: Receipt to rewrite in place
            ready_for_payment: The customer has finished ordering
            context: Free text passed through to subscribers

        Returns:
            The change that was delivered, or None when the receipt could not be rebuilt
        """
        try:
            transaction = self.provider.get_transaction_snapshot()
            items = None
            if transaction is not None and not self._is_cleared(transaction):
                items = self._build_items(transaction)
        except KernelError as e:
            logger.error(f"[RECEIPT] kernel read failed, receipt left unchanged: {e}")
            return None
        except Exception as e:
            logger.error(f"[RECEIPT] rebuild failed, receipt left unchanged: {type(e).__name__}: {e}")
            return None

        if items is None:
            logger.info("[RECEIPT] no active items, clearing receipt")
            return self.clear(receipt, context)

        before_items = [item.model_dump() for item in receipt.items]
        before_status = receipt.status

        receipt.items = items
        # Derived from the kernel total; float noise below a cent fraction counts as no tax
        tax = transaction.total - receipt.subtotal
        receipt.tax = tax if tax > TAX_EPSILON else 0.0
        receipt.status = self._status(transaction, ready_for_payment)

        after_items = [item.model_dump() for item in receipt.items]
        if receipt.status == PaymentStatus.completed and before_status != PaymentStatus.completed:
            change_type = ReceiptChangeType.payment_completed
        elif after_items != before_items:
            change_type = ReceiptChangeType.items_updated
        elif receipt.status != before_status:
            change_type = ReceiptChangeType.status_changed
        else:
            change_type = ReceiptChangeType.updated

        logger.info(
            f"[RECEIPT] {change_type.value}: {len(receipt.items)} lines, "
            f"total {receipt.total:.2f}, status {receipt.status.value}"
        )
        change = ReceiptChange(change_type=change_type, receipt=receipt.model_copy(deep=True), context=context)
        self.notify(change)
        return change

    def _build_items(self, transaction: KernelTransaction) -> List[ReceiptLineItem]:
        return [
            ReceiptLineItem(
                line_item_id=line.line_item_id,
                line_number=line.line_number,
                product_sku=line.product_sku,
                product_name=self.product_name(line.product_sku),
                quantity=line.quantity,
                unit_price=line.unit_price,
                parent_line_item_id=line.parent_line_item_id,
            )
            for line in transaction.line_items
        ]

    @staticmethod
    def _is_cleared(transaction: KernelTransaction) -> bool:
        return transaction.is_empty and transaction.state == KernelTransactionState.building

    @staticmethod
    def _status(transaction: KernelTransaction, ready_for_payment: bool) -> PaymentStatus:
        if transaction.state == KernelTransactionState.completed:
            return PaymentStatus.completed
        if ready_for_payment:
            return PaymentStatus.ready_for_payment
        return PaymentStatus.building
