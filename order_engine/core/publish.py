"""
Publish Workflow.

Promotes a draft product and all of its draft SKUs to the live collection in
one transaction: live rows are written under the draft ids, then every draft
row is deleted. Either all of it commits or none of it does.
"""
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import structlog
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.database.connection import get_session_factory
from order_engine.database.models import (
    SKU,
    CatalogRecord,
    Product,
    ProductDraft,
    SKUDraft,
    utcnow,
)

from .auth import AuthContext, PermissionGuard
from .errors import InvalidArgument

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=CatalogRecord)

NO_SKU_MESSAGE = "The product could not be published because the product does not have an SKU."


def parse_draft_path(path: str) -> Tuple[str, str]:
    """
    Split `.../providers/{provider_id}/productDrafts/{draft_id}`.

    Raises:
        InvalidArgument: If the path does not name a product draft
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 4 or parts[-4] != "providers" or parts[-2] != "productDrafts":
        raise InvalidArgument("Invalid path.")
    return parts[-3], parts[-1]


def _copy(source: CatalogRecord, target: Type[T], **overrides: Any) -> T:
    values = {attr.key: getattr(source, attr.key) for attr in inspect(source).mapper.column_attrs}
    values.update(overrides)
    return target(**values)


class PublishWorkflow:
    """Draft-to-live promotion for products."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory
        self.guard = PermissionGuard()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def publish(
        self, auth: Optional[AuthContext], product_draft_path: Optional[str]
    ) -> Dict[str, Any]:
        """
        Publish a product draft.

        Returns:
            Dict[str, Any]: `{"result": [published paths]}` or
            `{"error": {"message": ...}}` when the draft has no SKUs
        """
        auth = self.guard.require_authenticated(auth)
        if not product_draft_path:
            raise InvalidArgument("This request does not include an productDraftPath.")
        provider_id, draft_id = parse_draft_path(product_draft_path)
        self.guard.resolve_provider_id(auth)

        logger.info(
            "publish_started",
            product_draft_path=product_draft_path,
            actor_id=auth.actor_id,
        )

        async with self.session_factory() as db:
            async with db.begin():
                await self.guard.check_permission(db, auth, provider_id)

                draft = (
                    await db.execute(
                        select(ProductDraft).where(
                            ProductDraft.id == draft_id,
                            ProductDraft.provider_id == provider_id,
                        )
                    )
                ).scalar_one_or_none()
                if draft is None:
                    raise InvalidArgument("Invalid path.")

                sku_drafts = list(
                    (
                        await db.execute(
                            select(SKUDraft)
                            .where(
                                SKUDraft.product_id == draft_id,
                                SKUDraft.provider_id == provider_id,
                            )
                            .order_by(SKUDraft.id)
                        )
                    ).scalars()
                )
                if not sku_drafts:
                    logger.warning("publish_rejected_no_skus", product_draft_path=product_draft_path)
                    return {"error": {"message": NO_SKU_MESSAGE}}

                now = utcnow()
                product = await db.merge(
                    _copy(draft, Product, is_available=True, updated_at=now)
                )
                published: List[str] = [f"providers/{provider_id}/products/{product.id}"]
                for sku_draft in sku_drafts:
                    sku = await db.merge(_copy(sku_draft, SKU, updated_at=now))
                    published.append(sku.path)
                    await db.delete(sku_draft)
                await db.delete(draft)

        logger.info(
            "publish_completed",
            product_draft_path=product_draft_path,
            published_count=len(published),
        )
        return {"result": published}
