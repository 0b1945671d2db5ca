"""
Payment Transition Engine.

Drives an order through its payment state machine with processor calls,
funneling every write through the Order Ledger:

    confirm: processing -> succeeded (or payment_failed on a decline)
    cancel:  processing -> canceled
    refund:  succeeded  -> canceled

Each operation returns a `{result}` / `{error}` envelope for expected
failures; guard errors are raised before any side effect.
"""
import time
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.domain import OrderSnapshot, PaymentStatus
from order_engine.integrations.stripe_client import StripeClient, StripeError
from order_engine.monitoring.metrics import metrics

from .auth import AuthContext, PermissionGuard
from .errors import Conflict, ExternalProcessorError, InvalidArgument
from .idempotency import IdempotencyManager
from .ledger import Authorizer, Mutation, OrderLedger
from .revenue_split import RevenueSplitCalculator, TransferPlan

logger = structlog.get_logger(__name__)

Envelope = Dict[str, Any]


class PaymentTransitionEngine:
    """
    Payment state machine orchestrator.

    Processor calls happen inside the ledger transaction, after the order
    rows are locked and the status is verified, and always carry an
    idempotency key derived from the order id.
    """

    def __init__(
        self,
        ledger: Optional[OrderLedger] = None,
        stripe_client: Optional[StripeClient] = None,
        revenue_split: Optional[RevenueSplitCalculator] = None,
        idempotency_manager: Optional[IdempotencyManager] = None,
    ):
        self.ledger = ledger or OrderLedger()
        self.stripe_client = stripe_client or StripeClient()
        self.revenue_split = revenue_split or RevenueSplitCalculator(self.stripe_client)
        self.idempotency_manager = idempotency_manager or IdempotencyManager()
        self.guard = PermissionGuard()

        logger.info("payment_transition_engine_initialized")

    @staticmethod
    def _require(value: Optional[str], name: str) -> str:
        if not value:
            raise InvalidArgument(f"This request does not include an {name}.")
        return value

    async def _run_transition(
        self,
        operation: str,
        order_id: str,
        provider_id: str,
        expected: List[PaymentStatus],
        mutation: Mutation,
        authorize: Optional[Authorizer] = None,
    ) -> tuple[Optional[OrderSnapshot], Optional[Envelope]]:
        """Apply a transition, converting expected failures into an envelope."""
        start_time = time.time()
        try:
            order = await self.ledger.apply_transition(
                order_id, provider_id, expected, mutation, authorize=authorize
            )
        except Conflict as e:
            metrics.record_transition(operation, "conflict", time.time() - start_time)
            logger.info("order_transition_conflict", operation=operation, order_id=order_id, error=e.message)
            return None, e.to_envelope()
        except StripeError as e:
            metrics.record_transition(operation, "processor_error", time.time() - start_time)
            logger.error(
                "order_transition_processor_error",
                operation=operation,
                order_id=order_id,
                error=str(e),
                error_type=e.error_type.value,
                error_code=e.code,
            )
            wrapped = ExternalProcessorError(str(e), target=order_id, processor_code=e.code)
            return None, wrapped.to_envelope()

        metrics.record_transition(operation, order.payment_status.value, time.time() - start_time)
        return order, None

    async def confirm_order(
        self,
        auth: Optional[AuthContext],
        order_id: Optional[str],
        payment_intent_id: Optional[str],
    ) -> Envelope:
        """
        Capture payment for a `processing` order.

        The order id is the processor idempotency key, so a retried confirm
        can never capture twice. A declined payment is persisted as
        `payment_failed`; any other processor error leaves the order untouched.
        """
        auth = self.guard.require_authenticated(auth)
        order_id = self._require(order_id, "orderID")
        payment_intent_id = self._require(payment_intent_id, "paymentIntentID")
        provider_id = self.guard.resolve_provider_id(auth)

        logger.info(
            "confirm_order_started",
            order_id=order_id,
            provider_id=provider_id,
            actor_id=auth.actor_id,
        )

        replay_key = IdempotencyManager.confirm_key(provider_id, order_id, payment_intent_id)
        cached = await self.idempotency_manager.get_response(replay_key)
        if cached is not None:
            return cached

        plans: List[TransferPlan] = []

        async def confirm(db: AsyncSession, order: OrderSnapshot) -> Dict[str, Any]:
            plans[:] = await self.revenue_split.plan(db, order)
            try:
                intent = await self.stripe_client.confirm_payment_intent(
                    payment_intent_id, idempotency_key=order.id
                )
            except StripeError as e:
                if not e.is_definitive:
                    raise
                plans.clear()
                return {
                    "payment_status": PaymentStatus.PAYMENT_FAILED,
                    "payment_intent_id": payment_intent_id,
                    "payment_result": {
                        "error": e.raw or {"message": str(e), "code": e.code},
                    },
                }
            return {
                "payment_status": PaymentStatus.SUCCEEDED,
                "payment_intent_id": payment_intent_id,
                "payment_result": intent,
            }

        order, error = await self._run_transition(
            "confirm", order_id, provider_id, [PaymentStatus.PROCESSING], confirm
        )
        if error is not None:
            return error

        if order.payment_status == PaymentStatus.PAYMENT_FAILED:
            failure = (order.payment_result or {}).get("error") or {}
            logger.warning("confirm_order_declined", order_id=order_id, code=failure.get("code"))
            return ExternalProcessorError(
                failure.get("message") or "The payment was declined.",
                target=order_id,
                processor_code=failure.get("code"),
            ).to_envelope()

        if plans:
            await self.revenue_split.issue(plans)

        response = {"result": order.to_response()}
        await self.idempotency_manager.store_response(replay_key, response)
        logger.info("confirm_order_succeeded", order_id=order_id, transfers=len(plans))
        return response

    def _resolve_order_provider(self, auth: AuthContext, provider_id: Optional[str]) -> str:
        # Buyers carry no provider claim and name the order's provider explicitly.
        resolved = auth.provider_id or provider_id
        if not resolved:
            raise InvalidArgument("This request does not include a providerID.")
        return resolved

    def _order_authorizer(self, auth: AuthContext) -> Authorizer:
        def authorize(order: OrderSnapshot) -> None:
            self.guard.authorize_order(auth, order.provided_by, order.purchased_by)

        return authorize

    async def cancel_order(
        self,
        auth: Optional[AuthContext],
        order_id: Optional[str],
        provider_id: Optional[str] = None,
    ) -> Envelope:
        """Cancel a `processing` order before capture."""
        auth = self.guard.require_authenticated(auth)
        order_id = self._require(order_id, "orderID")
        provider_id = self._resolve_order_provider(auth, provider_id)

        logger.info("cancel_order_started", order_id=order_id, actor_id=auth.actor_id)

        async def cancel(db: AsyncSession, order: OrderSnapshot) -> Dict[str, Any]:
            if not order.payment_intent_id:
                raise InvalidArgument("The order does not have a paymentIntentID.")
            intent = await self.stripe_client.cancel_payment_intent(
                order.payment_intent_id, idempotency_key=f"cancel:{order.id}"
            )
            return {"payment_status": PaymentStatus.CANCELED, "payment_result": intent}

        order, error = await self._run_transition(
            "cancel",
            order_id,
            provider_id,
            [PaymentStatus.PROCESSING],
            cancel,
            authorize=self._order_authorizer(auth),
        )
        if error is not None:
            return error
        return {"result": order.to_response()}

    async def refund_order(
        self,
        auth: Optional[AuthContext],
        order_id: Optional[str],
        provider_id: Optional[str] = None,
    ) -> Envelope:
        """
        Refund a `succeeded` order.

        Revenue split transfers already issued for the order are not reversed.
        """
        auth = self.guard.require_authenticated(auth)
        order_id = self._require(order_id, "orderID")
        provider_id = self._resolve_order_provider(auth, provider_id)

        logger.info("refund_order_started", order_id=order_id, actor_id=auth.actor_id)

        async def refund(db: AsyncSession, order: OrderSnapshot) -> Dict[str, Any]:
            if not order.payment_intent_id:
                raise InvalidArgument("The order does not have a paymentIntentID.")
            refund_result = await self.stripe_client.create_refund(
                order.payment_intent_id, idempotency_key=f"refund:{order.id}"
            )
            return {
                "payment_status": PaymentStatus.CANCELED,
                "payment_result": {**(order.payment_result or {}), "refund": refund_result},
            }

        order, error = await self._run_transition(
            "refund",
            order_id,
            provider_id,
            [PaymentStatus.SUCCEEDED],
            refund,
            authorize=self._order_authorizer(auth),
        )
        if error is not None:
            return error
        return {"result": order.to_response()}
