"""Database package for the order engine."""
from . import triggers  # noqa: F401  registers the SKU change hooks
from .connection import close_db, get_db, get_session_factory, init_db, make_session_factory
from .models import (
    SKU,
    Account,
    Base,
    BuyerOrder,
    OutboxEvent,
    Product,
    ProductDraft,
    ProviderOperator,
    ProviderOrder,
    SKUDraft,
)

__all__ = [
    "Account",
    "Base",
    "BuyerOrder",
    "OutboxEvent",
    "Product",
    "ProductDraft",
    "ProviderOperator",
    "ProviderOrder",
    "SKU",
    "SKUDraft",
    "close_db",
    "get_db",
    "get_session_factory",
    "init_db",
    "make_session_factory",
]
