"""External integrations for the order engine."""
from .stripe_client import (
    ProcessorOutcome,
    ProcessorResult,
    StripeClient,
    StripeError,
    StripeErrorType,
)

__all__ = [
    "ProcessorOutcome",
    "ProcessorResult",
    "StripeClient",
    "StripeError",
    "StripeErrorType",
]
