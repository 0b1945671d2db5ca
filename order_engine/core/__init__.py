"""Core order payment and consistency logic."""
from .auth import AuthContext, PermissionGuard
from .errors import (
    Conflict,
    ExternalProcessorError,
    InvalidArgument,
    NotFound,
    OrderEngineError,
    PermissionDenied,
    PreconditionFailed,
    TransactionAborted,
)
from .idempotency import IdempotencyManager
from .inventory_sync import InventorySyncTrigger
from .ledger import OrderLedger
from .outbox import OutboxPublisher
from .payment_engine import PaymentTransitionEngine
from .payouts import PayoutAccountService
from .publish import PublishWorkflow
from .revenue_split import RevenueSplitCalculator

__all__ = [
    "AuthContext",
    "Conflict",
    "ExternalProcessorError",
    "IdempotencyManager",
    "InvalidArgument",
    "InventorySyncTrigger",
    "NotFound",
    "OrderEngineError",
    "OrderLedger",
    "OutboxPublisher",
    "PaymentTransitionEngine",
    "PayoutAccountService",
    "PermissionDenied",
    "PermissionGuard",
    "PreconditionFailed",
    "PublishWorkflow",
    "RevenueSplitCalculator",
    "TransactionAborted",
]
