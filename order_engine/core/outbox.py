"""
Transactional outbox dispatcher.

Order ledger writes and SKU writes append events to `outbox_events` in the
same transaction as the change. This dispatcher reads unpublished events in
commit order, routes each to the handler registered for its type, and marks
it published once the handler returns. The batch's rows stay locked until
they are marked, so concurrent workers never dispatch the same event.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.config import get_settings
from order_engine.database.connection import get_session_factory
from order_engine.database.models import OutboxEvent, utcnow
from order_engine.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class OutboxPublisher:
    """
    Dispatches events from the outbox table to registered handlers.

    A handler that raises leaves its event unpublished; it is retried on the
    next batch. Events with no registered handler are logged and acknowledged.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        batch_size: Optional[int] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self.batch_size = batch_size or settings.outbox_batch_size
        self.poll_interval_seconds = poll_interval_seconds or settings.outbox_poll_interval
        self.handlers: Dict[str, EventHandler] = {}
        self._running = False

        logger.info(
            "outbox_publisher_initialized",
            batch_size=self.batch_size,
            poll_interval=self.poll_interval_seconds,
        )

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for an event type.

        Example:
            publisher.register_handler("sku.created", lambda payload: trigger.on_create(payload))
        """
        self.handlers[event_type] = handler
        logger.info("outbox_handler_registered", event_type=event_type)

    def _unpublished_events_query(self) -> Select:
        # Rows claimed by another worker's batch are skipped, not awaited.
        return (
            select(OutboxEvent)
            .where(OutboxEvent.published.is_(False))
            .order_by(OutboxEvent.id)
            .limit(self.batch_size)
            .with_for_update(skip_locked=True)
        )

    async def _fetch_unpublished_events(self, db: AsyncSession) -> List[OutboxEvent]:
        result = await db.execute(self._unpublished_events_query())
        return list(result.scalars().all())

    async def _dispatch(self, event: OutboxEvent) -> bool:
        handler = self.handlers.get(event.event_type)
        if handler is None:
            logger.info(
                "outbox_event_unrouted",
                event_id=event.id,
                event_type=event.event_type,
                aggregate_id=event.aggregate_id,
            )
            metrics.record_outbox_dispatch(event.event_type, "unrouted")
            return True

        try:
            await handler(event.payload)
        except Exception as e:
            logger.error(
                "outbox_event_dispatch_failed",
                event_id=event.id,
                event_type=event.event_type,
                error=str(e),
            )
            metrics.record_outbox_dispatch(event.event_type, "failed")
            return False

        logger.info(
            "outbox_event_dispatched",
            event_id=event.id,
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
        )
        metrics.record_outbox_dispatch(event.event_type, "success")
        return True

    async def _mark_as_published(self, db: AsyncSession, event_ids: List[int]) -> None:
        if not event_ids:
            return
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id.in_(event_ids))
            .values(published=True, published_at=utcnow())
        )
        await db.execute(stmt)
        await db.commit()
        logger.info("outbox_events_marked_published", count=len(event_ids))

    async def process_batch(self) -> int:
        """
        Dispatch one batch of unpublished events.

        Returns:
            int: Number of events published
        """
        async with self.session_factory() as db:
            events = await self._fetch_unpublished_events(db)
            if not events:
                await db.commit()
                return 0

            published_ids = []
            for event in events:
                if await self._dispatch(event):
                    published_ids.append(event.id)

            await self._mark_as_published(db, published_ids)

            logger.info(
                "outbox_batch_processed",
                total=len(events),
                published=len(published_ids),
                failed=len(events) - len(published_ids),
            )
            return len(published_ids)

    async def drain(self, max_batches: int = 100) -> int:
        """Dispatch until the outbox is empty or `max_batches` is reached."""
        total = 0
        for _ in range(max_batches):
            published = await self.process_batch()
            total += published
            if published == 0:
                break
        return total

    async def start(self) -> None:
        """Poll and dispatch until `stop()` is called."""
        self._running = True
        logger.info("outbox_publisher_started")

        try:
            while self._running:
                try:
                    published_count = await self.process_batch()
                    metrics.set_outbox_queue_depth(await self.get_pending_count())
                except Exception as e:
                    logger.error("outbox_publisher_error", error=str(e))
                    await asyncio.sleep(self.poll_interval_seconds)
                    continue

                if published_count == 0:
                    await asyncio.sleep(self.poll_interval_seconds)
                else:
                    await asyncio.sleep(0.1)
        finally:
            logger.info("outbox_publisher_stopped")

    def stop(self) -> None:
        self._running = False
        logger.info("outbox_publisher_stop_requested")

    async def get_pending_count(self) -> int:
        async with self.session_factory() as db:
            stmt = select(func.count()).select_from(OutboxEvent).where(
                OutboxEvent.published.is_(False)
            )
            return int((await db.execute(stmt)).scalar_one())
