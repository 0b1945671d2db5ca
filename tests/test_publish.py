"""
Tests for the draft-to-live publish workflow.
"""
from typing import Any, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from order_engine.core.auth import AuthContext
from order_engine.core.errors import InvalidArgument, PermissionDenied, PreconditionFailed
from order_engine.core.publish import NO_SKU_MESSAGE, PublishWorkflow, parse_draft_path
from order_engine.database.models import (
    SKU,
    OutboxEvent,
    Product,
    ProductDraft,
    ProviderOperator,
    SKUDraft,
)
from order_engine.database.triggers import SKU_CREATED

OPERATOR = AuthContext(actor_id="op1", provider_id="p1")
DRAFT_PATH = "providers/p1/productDrafts/prod_1"


async def _count(session_factory: Any, model: Any) -> int:
    async with session_factory() as db:
        return int((await db.execute(select(func.count()).select_from(model))).scalar_one())


def _sku_draft(sku_id: str) -> SKUDraft:
    return SKUDraft(
        id=sku_id,
        product_id="prod_1",
        provider_id="p1",
        name=f"Tee {sku_id}",
        inventory=3,
        price=2500,
        currency="JPY",
        is_available=True,
    )


@pytest.fixture
def workflow(session_factory: Any) -> PublishWorkflow:
    return PublishWorkflow(session_factory=session_factory)


@pytest_asyncio.fixture
async def draft(seed: Callable[..., Awaitable[None]]) -> None:
    await seed(
        ProviderOperator(provider_id="p1", actor_id="op1", permissions=["read", "write"]),
        ProviderOperator(provider_id="p1", actor_id="viewer", permissions=["read"]),
        ProductDraft(id="prod_1", provider_id="p1", name="Tee", caption="Cotton tee"),
    )


@pytest.mark.unit
def test_parse_draft_path() -> None:
    assert parse_draft_path("/providers/p1/productDrafts/prod_1") == ("p1", "prod_1")
    with pytest.raises(InvalidArgument):
        parse_draft_path("providers/p1/products/prod_1")


class TestPublishWorkflow:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_publish_promotes_product_and_skus(
        self,
        workflow: PublishWorkflow,
        session_factory: Any,
        seed: Callable[..., Awaitable[None]],
        draft: None,
    ) -> None:
        await seed(_sku_draft("sku_1"), _sku_draft("sku_2"))

        response = await workflow.publish(OPERATOR, DRAFT_PATH)

        assert response == {
            "result": [
                "providers/p1/products/prod_1",
                "providers/p1/products/prod_1/skus/sku_1",
                "providers/p1/products/prod_1/skus/sku_2",
            ]
        }
        async with session_factory() as db:
            product = await db.get(Product, "prod_1")
            skus = list((await db.execute(select(SKU).order_by(SKU.id))).scalars())
            events = list(
                (
                    await db.execute(select(OutboxEvent).where(OutboxEvent.event_type == SKU_CREATED))
                ).scalars()
            )
        assert product.is_available is True
        assert product.caption == "Cotton tee"
        assert [s.id for s in skus] == ["sku_1", "sku_2"]
        assert all(s.price == 2500 for s in skus)
        assert sorted(e.aggregate_id for e in events) == ["sku_1", "sku_2"]
        assert await _count(session_factory, ProductDraft) == 0
        assert await _count(session_factory, SKUDraft) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_product_without_skus_is_not_published(
        self, workflow: PublishWorkflow, session_factory: Any, draft: None
    ) -> None:
        response = await workflow.publish(OPERATOR, DRAFT_PATH)

        assert response == {"error": {"message": NO_SKU_MESSAGE}}
        assert await _count(session_factory, Product) == 0
        assert await _count(session_factory, ProductDraft) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_republish_updates_live_sku(
        self,
        workflow: PublishWorkflow,
        session_factory: Any,
        seed: Callable[..., Awaitable[None]],
        draft: None,
    ) -> None:
        await seed(_sku_draft("sku_1"))
        await workflow.publish(OPERATOR, DRAFT_PATH)
        await seed(
            ProductDraft(id="prod_1", provider_id="p1", name="Tee v2"),
            _sku_draft("sku_1"),
        )

        await workflow.publish(OPERATOR, DRAFT_PATH)

        async with session_factory() as db:
            product = await db.get(Product, "prod_1")
            event_types = [
                e.event_type
                for e in (await db.execute(select(OutboxEvent).order_by(OutboxEvent.id))).scalars()
            ]
        assert product.name == "Tee v2"
        assert event_types == ["sku.created", "sku.updated"]
        assert await _count(session_factory, SKU) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_read_only_operator_denied(
        self,
        workflow: PublishWorkflow,
        session_factory: Any,
        seed: Callable[..., Awaitable[None]],
        draft: None,
    ) -> None:
        await seed(_sku_draft("sku_1"))

        with pytest.raises(PermissionDenied, match="permission to publish"):
            await workflow.publish(AuthContext(actor_id="viewer", provider_id="p1"), DRAFT_PATH)

        assert await _count(session_factory, SKU) == 0
        assert await _count(session_factory, SKUDraft) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_provider_denied(self, workflow: PublishWorkflow, draft: None) -> None:
        with pytest.raises(PermissionDenied):
            await workflow.publish(AuthContext(actor_id="op1", provider_id="p2"), DRAFT_PATH)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_draft_rejected(self, workflow: PublishWorkflow, draft: None) -> None:
        with pytest.raises(InvalidArgument, match="Invalid path."):
            await workflow.publish(OPERATOR, "providers/p1/productDrafts/missing")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_guards(self, workflow: PublishWorkflow) -> None:
        with pytest.raises(PreconditionFailed):
            await workflow.publish(None, DRAFT_PATH)
        with pytest.raises(InvalidArgument, match="productDraftPath"):
            await workflow.publish(OPERATOR, None)
        with pytest.raises(InvalidArgument, match="providerID"):
            await workflow.publish(AuthContext(actor_id="op1"), DRAFT_PATH)
