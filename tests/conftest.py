"""
Pytest configuration and fixtures.
"""
import os

os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake_key_for_testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./order_engine_test.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("APP_ENV", "test")

from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from order_engine.core.idempotency import IdempotencyManager  # noqa: E402
from order_engine.core.ledger import OrderLedger  # noqa: E402
from order_engine.core.payment_engine import PaymentTransitionEngine  # noqa: E402
from order_engine.core.revenue_split import RevenueSplitCalculator  # noqa: E402
from order_engine.database import Base, make_session_factory  # noqa: E402
from order_engine.domain import OrderSnapshot  # noqa: E402
from order_engine.integrations.stripe_client import StripeClient  # noqa: E402


@pytest_asyncio.fixture
async def db_engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """File-backed SQLite store, fresh per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(db_engine)


@pytest.fixture
def stripe_client() -> AsyncMock:
    """Processor double that succeeds unless a test says otherwise."""
    client = AsyncMock(spec=StripeClient)
    client.confirm_payment_intent.return_value = {"id": "pi_1", "status": "succeeded"}
    client.cancel_payment_intent.return_value = {"id": "pi_1", "status": "canceled"}
    client.create_refund.return_value = {"id": "re_1", "status": "succeeded"}
    client.create_transfer.return_value = {"id": "tr_1"}
    return client


@pytest.fixture
def idempotency_manager() -> AsyncMock:
    manager = AsyncMock(spec=IdempotencyManager)
    manager.get_response.return_value = None
    return manager


@pytest.fixture
def ledger(session_factory: async_sessionmaker[AsyncSession]) -> OrderLedger:
    return OrderLedger(session_factory=session_factory, max_attempts=3)


@pytest.fixture
def revenue_split(stripe_client: AsyncMock) -> RevenueSplitCalculator:
    return RevenueSplitCalculator(stripe_client=stripe_client, split_rate=0.2)


@pytest.fixture
def payment_engine(
    ledger: OrderLedger,
    stripe_client: AsyncMock,
    revenue_split: RevenueSplitCalculator,
    idempotency_manager: AsyncMock,
) -> PaymentTransitionEngine:
    return PaymentTransitionEngine(
        ledger=ledger,
        stripe_client=stripe_client,
        revenue_split=revenue_split,
        idempotency_manager=idempotency_manager,
    )


@pytest.fixture
def line_items() -> List[Dict[str, Any]]:
    return [
        {
            "product_reference": "providers/p1/products/prod_1",
            "sku_reference": "providers/p1/products/prod_1/skus/sku_1",
            "quantity": 1,
            "amount": 1000,
            "currency": "JPY",
        }
    ]


@pytest_asyncio.fixture
async def processing_order(ledger: OrderLedger, line_items: List[Dict[str, Any]]) -> OrderSnapshot:
    """Order o1 from buyer u1 at provider p1, awaiting capture of pi_1."""
    return await ledger.create_order(
        order_id="o1",
        purchased_by="u1",
        provided_by="p1",
        items=line_items,
        amount=1000,
        currency="JPY",
        payment_intent_id="pi_1",
    )


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[None]]:
    """Insert fixture rows in one transaction."""

    async def add_rows(*rows: Any) -> None:
        async with session_factory() as db:
            async with db.begin():
                db.add_all(rows)

    return add_rows
