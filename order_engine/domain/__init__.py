"""
Domain layer for orders and catalog records.

Holds the payment state machine and the immutable values that cross the
ledger boundary. No database or processor imports live here.
"""
from .value_objects import (
    LEGAL_TRANSITIONS,
    LineItem,
    OrderSnapshot,
    PaymentStatus,
    SalesMethod,
    is_legal_transition,
)

__all__ = [
    "LEGAL_TRANSITIONS",
    "LineItem",
    "OrderSnapshot",
    "PaymentStatus",
    "SalesMethod",
    "is_legal_transition",
]
