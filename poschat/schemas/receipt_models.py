"""Receipt view models and receipt change notifications."""
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    building = "Building"
    ready_for_payment = "ReadyForPayment"
    completed = "Completed"


class StoreInfo(BaseModel):
    name: str
    currency: str
    store_type: str = "kopitiam"
    culture_code: str = "en-SG"


class ReceiptLineItem(BaseModel):
    line_item_id: str
    line_number: int
    product_sku: str
    product_name: str
    quantity: int
    unit_price: float
    parent_line_item_id: Optional[str] = None

    @property
    def extended_price(self) -> float:
        return self.unit_price * self.quantity


def new_transaction_id() -> str:
    return uuid.uuid4().hex[:8]


class Receipt(BaseModel):
    """UI-facing view of the current order, rebuilt from the kernel on every sync."""

    store: StoreInfo
    transaction_id: str = Field(default_factory=new_transaction_id)
    items: List[ReceiptLineItem] = Field(default_factory=list)
    tax: float = 0.0
    status: PaymentStatus = PaymentStatus.building
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def subtotal(self) -> float:
        return sum(item.extended_price for item in self.items)

    @property
    def total(self) -> float:
        return self.subtotal + self.tax

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class ReceiptChangeType(str, Enum):
    items_updated = "ItemsUpdated"
    status_changed = "StatusChanged"
    payment_completed = "PaymentCompleted"
    cleared = "Cleared"
    updated = "Updated"


class ReceiptChange(BaseModel):
    change_type: ReceiptChangeType
    receipt: Receipt
    context: Optional[str] = None
