"""SQLAlchemy database models for the order engine."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")

PAYMENT_STATUSES = "'none', 'processing', 'succeeded', 'payment_failed', 'canceled'"


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """Return a write timestamp strictly later than `previous`."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class OrderRecord(Base):
    """
    Columns shared by both scoped copies of an order.

    The buyer-scoped and provider-scoped tables hold the same logical order.
    They are only ever written together by the order ledger.
    """

    __abstract__ = True

    id: Mapped[str] = mapped_column(String(64), nullable=False)
    purchased_by: Mapped[str] = mapped_column(String(128), nullable=False)
    provided_by: Mapped[str] = mapped_column(String(128), nullable=False)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False)
    delivery_status: Mapped[str] = mapped_column(String(32), nullable=False, default="none")
    sales_method: Mapped[str] = mapped_column(String(16), nullable=False, default="online")
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    tags: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(id={self.id}, provided_by={self.provided_by}, "
            f"purchased_by={self.purchased_by}, status={self.payment_status})>"
        )


class ProviderOrder(OrderRecord):
    """Provider-scoped copy. Authoritative for locating the buyer copy."""

    __tablename__ = "provider_orders"
    __table_args__ = (
        PrimaryKeyConstraint("provided_by", "id", name="pk_provider_orders"),
        CheckConstraint(f"payment_status IN ({PAYMENT_STATUSES})", name="valid_provider_status"),
        Index("idx_provider_orders_status", "provided_by", "payment_status"),
    )


class BuyerOrder(OrderRecord):
    """Buyer-scoped copy."""

    __tablename__ = "buyer_orders"
    __table_args__ = (
        PrimaryKeyConstraint("purchased_by", "id", name="pk_buyer_orders"),
        CheckConstraint(f"payment_status IN ({PAYMENT_STATUSES})", name="valid_buyer_status"),
        Index("idx_buyer_orders_created_desc", "purchased_by", "created_at"),
    )


class CatalogRecord(Base):
    """Columns shared by live and draft products."""

    __abstract__ = True

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    caption: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attributes: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), nullable=False, default=utcnow, onupdate=utcnow
    )


class ProductDraft(CatalogRecord):
    __tablename__ = "product_drafts"


class Product(CatalogRecord):
    __tablename__ = "products"


class SKURecord(CatalogRecord):
    """Columns shared by live and draft SKUs."""

    __abstract__ = True

    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    inventory: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")


class SKUDraft(SKURecord):
    __tablename__ = "sku_drafts"


class SKU(SKURecord):
    """
    Live sellable variant.

    Mirrored 1:1 into the processor catalog under the same id. Inserts and
    updates emit `sku.created` / `sku.updated` outbox events (see triggers).
    """

    __tablename__ = "skus"
    __table_args__ = (CheckConstraint("inventory >= 0", name="non_negative_inventory"),)

    @property
    def product_path(self) -> str:
        return f"providers/{self.provider_id}/products/{self.product_id}"

    @property
    def path(self) -> str:
        return f"{self.product_path}/skus/{self.id}"

    def __repr__(self) -> str:
        return f"<SKU(id={self.id}, product_id={self.product_id}, available={self.is_available})>"


class Account(Base):
    """
    Payout account mapping.

    `stripe_account_id` is the connected account receiving transfers; a missing
    row or NULL means the actor cannot currently be paid.
    """

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), nullable=False, default=utcnow, onupdate=utcnow
    )


class ProviderOperator(Base):
    """Actor membership on a provider's operator roster."""

    __tablename__ = "provider_operators"
    __table_args__ = (PrimaryKeyConstraint("provider_id", "actor_id", name="pk_provider_operators"),)

    provider_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    permissions: Mapped[List[str]] = mapped_column(
        JSONType, nullable=False, default=lambda: ["read", "write", "owner"]
    )


class OutboxEvent(Base):
    """
    Transactional outbox / change feed.

    Events are written in the same transaction as the change they describe
    and dispatched later by the outbox worker.
    """

    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    aggregate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False, default=utcnow)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    __table_args__ = (
        Index("idx_outbox_unpublished", "published", "created_at"),
        Index("idx_outbox_aggregate", "aggregate_id", "aggregate_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<OutboxEvent(id={self.id}, type={self.event_type}, "
            f"published={self.published})>"
        )
