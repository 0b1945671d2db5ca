"""
Value objects for the order payment engine.

The payment state machine:

    none -> processing -> succeeded | payment_failed
    processing -> canceled      (cancel before capture)
    succeeded -> canceled       (refund)

Anything else is illegal and must be rejected before a write.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatus(str, Enum):
    """Payment state of an order."""

    NONE = "none"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    PAYMENT_FAILED = "payment_failed"
    CANCELED = "canceled"


class SalesMethod(str, Enum):
    ONLINE = "online"
    INSTORE = "instore"
    PICKUP = "pickup"
    DOWNLOAD = "download"


LEGAL_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.NONE: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.SUCCEEDED, PaymentStatus.PAYMENT_FAILED, PaymentStatus.CANCELED}
    ),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.CANCELED}),
    PaymentStatus.PAYMENT_FAILED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
}


def is_legal_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    """Check a payment status change against the state machine."""
    return new in LEGAL_TRANSITIONS[current]


class LineItem(BaseModel):
    """
    One purchased SKU within an order.

    `mediated_by` names an intermediary actor; its presence makes the item
    eligible for a revenue split.
    """

    model_config = ConfigDict(frozen=True)

    product_reference: str
    sku_reference: str
    quantity: int = Field(default=1, ge=1)
    amount: int = Field(..., ge=0, description="Line total in the currency's minor unit")
    currency: str = Field(..., min_length=3, max_length=3)
    mediated_by: Optional[str] = None


class OrderSnapshot(BaseModel):
    """Read-only view of an order as returned by the ledger."""

    model_config = ConfigDict(frozen=True)

    id: str
    purchased_by: str
    provided_by: str
    items: List[LineItem] = Field(default_factory=list)
    amount: int
    currency: str
    payment_status: PaymentStatus
    delivery_status: str = "none"
    sales_method: SalesMethod = SalesMethod.ONLINE
    payment_intent_id: Optional[str] = None
    payment_result: Optional[Dict[str, Any]] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_response(self) -> Dict[str, Any]:
        """Serialize for the `{result}` envelope."""
        return self.model_dump(mode="json")
