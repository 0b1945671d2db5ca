"""Initial order engine schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import List, Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PAYMENT_STATUSES = "'none', 'processing', 'succeeded', 'payment_failed', 'canceled'"
JSONB = postgresql.JSONB(astext_type=sa.Text())


def _order_columns() -> List[sa.Column]:
    return [
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("purchased_by", sa.String(length=128), nullable=False),
        sa.Column("provided_by", sa.String(length=128), nullable=False),
        sa.Column("items", JSONB, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_status", sa.String(length=32), nullable=False),
        sa.Column("delivery_status", sa.String(length=32), nullable=False),
        sa.Column("sales_method", sa.String(length=16), nullable=False),
        sa.Column("payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("payment_result", JSONB, nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _catalog_columns(sku: bool = False) -> List[sa.Column]:
    columns = [
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("provider_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("caption", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("attributes", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]
    if sku:
        columns += [
            sa.Column("product_id", sa.String(length=64), nullable=False),
            sa.Column("inventory", sa.Integer(), nullable=False),
            sa.Column("price", sa.BigInteger(), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
        ]
    return columns


def upgrade() -> None:
    """Upgrade database schema."""
    # Order copies, written together by the ledger
    op.create_table(
        "provider_orders",
        *_order_columns(),
        sa.CheckConstraint(f"payment_status IN ({PAYMENT_STATUSES})", name="valid_provider_status"),
        sa.PrimaryKeyConstraint("provided_by", "id", name="pk_provider_orders"),
    )
    op.create_index(
        "idx_provider_orders_status",
        "provider_orders",
        ["provided_by", "payment_status"],
        unique=False,
    )
    op.create_table(
        "buyer_orders",
        *_order_columns(),
        sa.CheckConstraint(f"payment_status IN ({PAYMENT_STATUSES})", name="valid_buyer_status"),
        sa.PrimaryKeyConstraint("purchased_by", "id", name="pk_buyer_orders"),
    )
    op.create_index(
        "idx_buyer_orders_created_desc",
        "buyer_orders",
        ["purchased_by", "created_at"],
        unique=False,
    )

    # Catalog
    for table in ("product_drafts", "products"):
        op.create_table(table, *_catalog_columns(), sa.PrimaryKeyConstraint("id"))
        op.create_index(op.f(f"ix_{table}_provider_id"), table, ["provider_id"], unique=False)
    for table in ("sku_drafts", "skus"):
        constraints = [sa.PrimaryKeyConstraint("id")]
        if table == "skus":
            constraints.append(sa.CheckConstraint("inventory >= 0", name="non_negative_inventory"))
        op.create_table(table, *_catalog_columns(sku=True), *constraints)
        op.create_index(op.f(f"ix_{table}_provider_id"), table, ["provider_id"], unique=False)
        op.create_index(op.f(f"ix_{table}_product_id"), table, ["product_id"], unique=False)

    # Payout accounts and operator roster
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("stripe_account_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "provider_operators",
        sa.Column("provider_id", sa.String(length=128), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("permissions", JSONB, nullable=False),
        sa.PrimaryKeyConstraint("provider_id", "actor_id", name="pk_provider_operators"),
    )
    op.create_index(
        op.f("ix_provider_operators_actor_id"), "provider_operators", ["actor_id"], unique=False
    )

    # Change feed
    op.create_table(
        "outbox_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("aggregate_id", sa.String(length=255), nullable=False),
        sa.Column("aggregate_type", sa.String(length=100), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("published", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_outbox_aggregate",
        "outbox_events",
        ["aggregate_id", "aggregate_type"],
        unique=False,
    )
    op.create_index(
        "idx_outbox_unpublished",
        "outbox_events",
        ["published", "created_at"],
        unique=False,
    )
    op.create_index(
        op.f("ix_outbox_events_published"),
        "outbox_events",
        ["published"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index(op.f("ix_outbox_events_published"), table_name="outbox_events")
    op.drop_index("idx_outbox_unpublished", table_name="outbox_events")
    op.drop_index("idx_outbox_aggregate", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index(op.f("ix_provider_operators_actor_id"), table_name="provider_operators")
    op.drop_table("provider_operators")
    op.drop_table("accounts")
    for table in ("skus", "sku_drafts"):
        op.drop_index(op.f(f"ix_{table}_product_id"), table_name=table)
        op.drop_index(op.f(f"ix_{table}_provider_id"), table_name=table)
        op.drop_table(table)
    for table in ("products", "product_drafts"):
        op.drop_index(op.f(f"ix_{table}_provider_id"), table_name=table)
        op.drop_table(table)
    op.drop_index("idx_buyer_orders_created_desc", table_name="buyer_orders")
    op.drop_table("buyer_orders")
    op.drop_index("idx_provider_orders_status", table_name="provider_orders")
    op.drop_table("provider_orders")
