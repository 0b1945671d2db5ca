"""
Outbox dispatcher background worker.

Continuously polls the outbox table and feeds SKU change events to the
Inventory Sync Trigger.
"""
import asyncio
import signal
from typing import Optional

import structlog

from order_engine.core.inventory_sync import InventorySyncTrigger
from order_engine.core.outbox import OutboxPublisher
from order_engine.database.triggers import SKU_CREATED, SKU_UPDATED
from order_engine.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


def build_publisher(
    trigger: Optional[InventorySyncTrigger] = None,
    publisher: Optional[OutboxPublisher] = None,
) -> OutboxPublisher:
    """Wire the change feed to its consumers."""
    trigger = trigger or InventorySyncTrigger()
    publisher = publisher or OutboxPublisher()
    publisher.register_handler(SKU_CREATED, trigger.on_create)
    publisher.register_handler(SKU_UPDATED, trigger.on_update)
    return publisher


async def start_outbox_publisher() -> None:
    """Run the dispatcher until SIGINT/SIGTERM."""
    setup_logging()
    logger.info("outbox_publisher_worker_starting")

    publisher = build_publisher()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, publisher.stop)

    try:
        await publisher.start()
    except Exception as e:
        logger.error("outbox_publisher_worker_error", error=str(e))
        raise
    finally:
        logger.info("outbox_publisher_worker_stopped")


def main() -> None:
    asyncio.run(start_outbox_publisher())


if __name__ == "__main__":
    main()
