"""
Inventory Sync Trigger.

Mirrors live SKU records into the processor catalog when the store reports a
SKU create or update. Failure policy:

- RECOVERABLE_GAP (processor says the referenced resource is missing): no
  further action. This also applies on create, where it usually means the
  parent catalog entry does not exist yet; the behavior is kept as is.
- FATAL (any other processor error): log, then force `is_available = False`
  on the SKU so it can never stay sellable while absent from the catalog.
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.database.connection import get_session_factory
from order_engine.database.models import SKU
from order_engine.integrations.stripe_client import (
    ProcessorOutcome,
    ProcessorResult,
    StripeClient,
)
from order_engine.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class InventorySyncTrigger:
    """Event-driven catalog mirror for SKU records."""

    def __init__(
        self,
        stripe_client: Optional[StripeClient] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._stripe_client = stripe_client
        self._session_factory = session_factory

    @property
    def stripe_client(self) -> StripeClient:
        if self._stripe_client is None:
            self._stripe_client = StripeClient()
        return self._stripe_client

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def on_create(self, sku: Dict[str, Any]) -> ProcessorOutcome:
        """Create the catalog entry for a new SKU."""
        logger.info("catalog_sync_create", sku_id=sku["id"], sku_path=sku["path"])
        result = await self.stripe_client.create_catalog_item(sku)
        return await self._settle("create", sku, result)

    async def on_update(self, sku: Dict[str, Any]) -> Optional[ProcessorOutcome]:
        """
        Mirror an updated SKU.

        Withdrawn SKUs are not re-synced, which also ends the event chain
        started by the self-heal write.
        """
        if not sku["is_available"]:
            metrics.record_catalog_sync("update", "skipped")
            return None
        logger.info("catalog_sync_update", sku_id=sku["id"], sku_path=sku["path"])
        result = await self.stripe_client.update_catalog_item(sku)
        return await self._settle("update", sku, result)

    async def _settle(
        self, trigger: str, sku: Dict[str, Any], result: ProcessorResult
    ) -> ProcessorOutcome:
        metrics.record_catalog_sync(trigger, result.outcome.value)

        if result.outcome is ProcessorOutcome.OK:
            logger.info("catalog_sync_succeeded", trigger=trigger, sku_id=sku["id"])
        elif result.outcome is ProcessorOutcome.RECOVERABLE_GAP:
            logger.info(
                "catalog_sync_resource_missing",
                trigger=trigger,
                sku_id=sku["id"],
                error=str(result.error),
            )
        elif result.outcome is ProcessorOutcome.FATAL:
            logger.error(
                "catalog_sync_failed",
                trigger=trigger,
                sku_id=sku["id"],
                error=str(result.error),
                error_code=result.error.code if result.error else None,
            )
            await self.withdraw(sku["id"])
        else:
            raise ValueError(f"Unhandled processor outcome: {result.outcome}")
        return result.outcome

    async def withdraw(self, sku_id: str) -> None:
        """Persist `is_available = False` on a SKU."""
        async with self.session_factory() as db:
            async with db.begin():
                sku = await db.get(SKU, sku_id)
                if sku is None:
                    logger.warning("catalog_sync_withdraw_missing_sku", sku_id=sku_id)
                    return
                sku.is_available = False
        logger.warning("sku_withdrawn", sku_id=sku_id)
