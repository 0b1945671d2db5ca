"""
Order Ledger.

Owns the two denormalized copies of every order (provider-scoped and
buyer-scoped) and is the only code that writes them. Every write locks both
rows, checks the expected payment status, and updates both copies with one
ledger-assigned `updated_at` inside a single transaction.

Store aborts (deadlock / serialization failure) are retried as a whole unit,
mutation included. Mutations that call the processor must therefore pass a
stable idempotency key so a re-run cannot repeat the side effect.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from order_engine.config import get_settings
from order_engine.database.connection import get_session_factory
from order_engine.database.models import (
    BuyerOrder,
    OrderRecord,
    OutboxEvent,
    ProviderOrder,
    next_timestamp,
    utcnow,
)
from order_engine.domain import LineItem, OrderSnapshot, PaymentStatus, is_legal_transition
from order_engine.monitoring.metrics import metrics

from .errors import Conflict, InvalidArgument, NotFound, TransactionAborted

logger = structlog.get_logger(__name__)

Mutation = Callable[[AsyncSession, OrderSnapshot], Awaitable[Dict[str, Any]]]
Authorizer = Callable[[OrderSnapshot], None]

WRITABLE_FIELDS = frozenset({"payment_status", "payment_result", "payment_intent_id"})

# deadlock_detected, serialization_failure
_RETRYABLE_SQLSTATES = {"40P01", "40001"}

ORDER_CREATED = "order.created"
ORDER_PAYMENT_STATUS_CHANGED = "order.payment_status_changed"


class _StoreAbort(Exception):
    pass


def _is_store_abort(error: DBAPIError) -> bool:
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in _RETRYABLE_SQLSTATES


def _snapshot(row: OrderRecord) -> OrderSnapshot:
    return OrderSnapshot.model_validate(row, from_attributes=True)


def _order_path(provider_id: str, order_id: str) -> str:
    return f"providers/{provider_id}/orders/{order_id}"


class OrderLedger:
    """Atomic dual-write store for orders."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        max_attempts: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.max_attempts = max_attempts or get_settings().ledger_max_attempts

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def create_order(
        self,
        order_id: str,
        purchased_by: str,
        provided_by: str,
        items: Iterable[Dict[str, Any]],
        amount: int,
        currency: str,
        payment_status: PaymentStatus = PaymentStatus.PROCESSING,
        **fields: Any,
    ) -> OrderSnapshot:
        """
        Insert both copies of a new order.

        Used by checkout; extra keyword fields (sales_method, tags,
        payment_intent_id, delivery_status) are copied verbatim.
        """
        try:
            line_items = [LineItem.model_validate(item).model_dump() for item in items]
        except ValueError as e:
            raise InvalidArgument(f"Invalid line item: {e}") from e

        now = utcnow()
        values: Dict[str, Any] = {
            "id": order_id,
            "purchased_by": purchased_by,
            "provided_by": provided_by,
            "items": line_items,
            "amount": amount,
            "currency": currency.upper(),
            "payment_status": PaymentStatus(payment_status).value,
            "created_at": now,
            "updated_at": now,
            **fields,
        }

        try:
            async with self.session_factory() as db:
                async with db.begin():
                    provider_row = ProviderOrder(**values)
                    db.add_all(
                        [
                            provider_row,
                            BuyerOrder(**values),
                            self._change_event(provider_row, ORDER_CREATED, None),
                        ]
                    )
        except IntegrityError as e:
            raise Conflict("The order already exists.", target=order_id) from e

        logger.info(
            "order_created",
            order_id=order_id,
            provided_by=provided_by,
            purchased_by=purchased_by,
            payment_status=values["payment_status"],
        )
        return _snapshot(provider_row)

    async def get_order(self, order_id: str, provider_id: str) -> OrderSnapshot:
        """Read the provider-scoped copy."""
        async with self.session_factory() as db:
            row = await db.get(ProviderOrder, {"provided_by": provider_id, "id": order_id})
            if row is None:
                raise NotFound(f"The order does not exist. {_order_path(provider_id, order_id)}")
            return _snapshot(row)

    async def get_buyer_order(self, order_id: str, buyer_id: str) -> OrderSnapshot:
        """Read the buyer-scoped copy."""
        async with self.session_factory() as db:
            row = await db.get(BuyerOrder, {"purchased_by": buyer_id, "id": order_id})
            if row is None:
                raise NotFound(f"The order does not exist. users/{buyer_id}/orders/{order_id}")
            return _snapshot(row)

    async def apply_transition(
        self,
        order_id: str,
        provider_id: str,
        expected_statuses: Iterable[PaymentStatus],
        mutation: Mutation,
        authorize: Optional[Authorizer] = None,
    ) -> OrderSnapshot:
        """
        Atomically move an order to the state produced by `mutation`.

        Args:
            order_id: Order id
            provider_id: Provider owning the authoritative copy
            expected_statuses: Statuses the order must currently be in
            mutation: Async callable returning the new field values
            authorize: Optional check run against the locked order before
                the status check and before the mutation

        Returns:
            OrderSnapshot: The order as committed

        Raises:
            NotFound: If the provider-scoped order does not exist
            Conflict: If the current status is not expected (nothing written)
            TransactionAborted: If the store keeps aborting the transaction
        """
        expected = frozenset(PaymentStatus(s) for s in expected_statuses)
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(_StoreAbort),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._transition_once(
                        order_id, provider_id, expected, mutation, authorize
                    )
        except _StoreAbort as e:
            logger.error("ledger_transaction_aborted", order_id=order_id)
            raise TransactionAborted(
                "The order is being modified concurrently. Please retry.", target=order_id
            ) from e
        raise AssertionError("unreachable")  # pragma: no cover

    async def _transition_once(
        self,
        order_id: str,
        provider_id: str,
        expected: frozenset,
        mutation: Mutation,
        authorize: Optional[Authorizer],
    ) -> OrderSnapshot:
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    provider_row = await self._lock(
                        db, ProviderOrder, ProviderOrder.provided_by == provider_id, order_id
                    )
                    if provider_row is None:
                        raise NotFound(
                            f"The order does not exist. {_order_path(provider_id, order_id)}"
                        )
                    current = _snapshot(provider_row)
                    if authorize is not None:
                        authorize(current)
                    if current.payment_status not in expected:
                        logger.info(
                            "order_transition_rejected",
                            order_id=order_id,
                            payment_status=current.payment_status.value,
                            expected=sorted(s.value for s in expected),
                        )
                        raise Conflict("Invalid order status.", target=order_id)

                    buyer_row = await self._lock(
                        db, BuyerOrder, BuyerOrder.purchased_by == current.purchased_by, order_id
                    )
                    if buyer_row is None:
                        raise NotFound(
                            f"The order does not exist. users/{current.purchased_by}/orders/{order_id}"
                        )

                    changes = await mutation(db, current)
                    self._validate_changes(current, changes)

                    updated_at = next_timestamp(max(provider_row.updated_at, buyer_row.updated_at))
                    for row in (provider_row, buyer_row):
                        for field, value in changes.items():
                            setattr(row, field, value)
                        row.updated_at = updated_at
                    db.add(
                        self._change_event(
                            provider_row, ORDER_PAYMENT_STATUS_CHANGED, current.payment_status
                        )
                    )
                    await db.flush()
        except DBAPIError as e:
            if _is_store_abort(e):
                raise _StoreAbort() from e
            raise

        committed = _snapshot(provider_row)
        logger.info(
            "order_transition_committed",
            order_id=order_id,
            from_status=current.payment_status.value,
            to_status=committed.payment_status.value,
            updated_at=committed.updated_at.isoformat() if committed.updated_at else None,
        )
        return committed

    @staticmethod
    async def _lock(
        db: AsyncSession, model: Any, owner_clause: Any, order_id: str
    ) -> Optional[OrderRecord]:
        stmt = select(model).where(owner_clause, model.id == order_id).with_for_update()
        return (await db.execute(stmt)).scalar_one_or_none()

    @staticmethod
    def _validate_changes(current: OrderSnapshot, changes: Dict[str, Any]) -> None:
        unknown = set(changes) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Ledger cannot write fields: {sorted(unknown)}")
        if "payment_status" in changes:
            new_status = PaymentStatus(changes["payment_status"])
            if new_status != current.payment_status and not is_legal_transition(
                current.payment_status, new_status
            ):
                raise Conflict(
                    f"Illegal payment transition {current.payment_status.value} -> {new_status.value}.",
                    target=current.id,
                )
            changes["payment_status"] = new_status.value

    @staticmethod
    def _change_event(
        row: OrderRecord, event_type: str, previous: Optional[PaymentStatus]
    ) -> OutboxEvent:
        return OutboxEvent(
            aggregate_id=row.id,
            aggregate_type="order",
            event_type=event_type,
            payload={
                "order_id": row.id,
                "provided_by": row.provided_by,
                "purchased_by": row.purchased_by,
                "previous_status": previous.value if previous else None,
                "payment_status": row.payment_status,
            },
            published=False,
        )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        metrics.record_ledger_retry()
        logger.warning("ledger_transaction_retry", attempt=retry_state.attempt_number)
