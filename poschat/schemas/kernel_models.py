"""Transfer objects exchanged with the transaction kernel.

These are the only shapes the rest of the package reads kernel results
through. ``schema_version`` is bumped whenever a field changes meaning.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

KERNEL_SCHEMA_VERSION = 1


class KernelTransactionState(str, Enum):
    building = "Building"
    completed = "Completed"
    voided = "Voided"


class KernelLineItem(BaseModel):
    line_item_id: str
    line_number: int
    product_sku: str
    quantity: int
    unit_price: float
    extended_price: float
    parent_line_item_id: Optional[str] = None


class KernelTransaction(BaseModel):
    schema_version: int = KERNEL_SCHEMA_VERSION
    transaction_id: str
    state: KernelTransactionState = KernelTransactionState.building
    currency: str
    total: float = 0.0
    tendered: float = 0.0
    change_due: float = 0.0
    line_items: List[KernelLineItem] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.line_items


class KernelSession(BaseModel):
    session_id: str
    terminal_id: str
    operator_id: str
