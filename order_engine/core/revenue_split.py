"""
Revenue Split Calculator.

Line items carrying `mediated_by` earn the intermediary a fixed share:

    transfer_amount = floor(item.amount * split_rate)

Transfers are planned inside the confirm transaction (account lookups are
reads) and issued after it commits. They are not part of the order's atomic
unit: a crash between commit and issuance leaves the transfer unissued.
Each transfer uses a deterministic idempotency key derived from the order id
and line index, so re-issuing a plan never pays twice.
"""
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.config import get_settings
from order_engine.database.models import Account
from order_engine.domain import OrderSnapshot
from order_engine.integrations.stripe_client import StripeClient, StripeError
from order_engine.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TransferPlan:
    order_id: str
    line_index: int
    actor_id: str
    destination: str
    amount: int
    currency: str

    @property
    def idempotency_key(self) -> str:
        return f"transfer:{self.order_id}:{self.line_index}"


@dataclass(frozen=True)
class TransferOutcome:
    plan: TransferPlan
    transfer_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def issued(self) -> bool:
        return self.error is None


def split_amount(amount: int, rate: float) -> int:
    """Intermediary share of a line amount, rounded down to the minor unit."""
    return math.floor(Decimal(amount) * Decimal(str(rate)))


class RevenueSplitCalculator:
    """Computes and requests payouts to intermediaries on an order."""

    def __init__(
        self,
        stripe_client: Optional[StripeClient] = None,
        split_rate: Optional[float] = None,
    ):
        self._stripe_client = stripe_client
        self.split_rate = split_rate if split_rate is not None else get_settings().revenue_split_rate

    @property
    def stripe_client(self) -> StripeClient:
        if self._stripe_client is None:
            self._stripe_client = StripeClient()
        return self._stripe_client

    async def plan(self, db: AsyncSession, order: OrderSnapshot) -> List[TransferPlan]:
        """
        Compute the transfers owed for an order.

        Intermediaries without a linked payout account are skipped; they
        receive nothing until an account exists.
        """
        plans: List[TransferPlan] = []
        for index, item in enumerate(order.items):
            if not item.mediated_by:
                continue

            account = await db.get(Account, item.mediated_by)
            if account is None or not account.stripe_account_id:
                logger.warning(
                    "revenue_split_account_missing",
                    order_id=order.id,
                    actor_id=item.mediated_by,
                    line_index=index,
                )
                metrics.record_transfer("skipped_no_account")
                continue

            amount = split_amount(item.amount, self.split_rate)
            if amount <= 0:
                continue
            plans.append(
                TransferPlan(
                    order_id=order.id,
                    line_index=index,
                    actor_id=item.mediated_by,
                    destination=account.stripe_account_id,
                    amount=amount,
                    currency=item.currency,
                )
            )
        return plans

    async def issue(self, plans: List[TransferPlan]) -> List[TransferOutcome]:
        """
        Request every planned transfer.

        A failed transfer is logged and reported in the outcome; it does not
        undo the order transition that preceded it.
        """
        outcomes: List[TransferOutcome] = []
        for plan in plans:
            try:
                transfer: Dict[str, Any] = await self.stripe_client.create_transfer(
                    amount=plan.amount,
                    currency=plan.currency,
                    destination=plan.destination,
                    transfer_group=plan.order_id,
                    idempotency_key=plan.idempotency_key,
                    description=f"Transfer from Order: [{plan.order_id}] to UID: [{plan.actor_id}]",
                    metadata={"uid": plan.actor_id, "order_id": plan.order_id},
                )
            except StripeError as e:
                logger.error(
                    "revenue_split_transfer_failed",
                    order_id=plan.order_id,
                    actor_id=plan.actor_id,
                    amount=plan.amount,
                    error=str(e),
                    error_code=e.code,
                )
                metrics.record_transfer("failed")
                outcomes.append(TransferOutcome(plan=plan, error=str(e)))
                continue

            logger.info(
                "revenue_split_transfer_issued",
                order_id=plan.order_id,
                actor_id=plan.actor_id,
                amount=plan.amount,
                transfer_id=transfer.get("id"),
            )
            metrics.record_transfer("issued")
            outcomes.append(TransferOutcome(plan=plan, transfer_id=transfer.get("id")))
        return outcomes
