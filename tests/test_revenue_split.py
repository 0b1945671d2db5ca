"""
Tests for revenue splitting to intermediaries on confirm.
"""
from typing import Any, Awaitable, Callable
from unittest.mock import AsyncMock

import pytest

from order_engine.core.auth import AuthContext
from order_engine.core.ledger import OrderLedger
from order_engine.core.payment_engine import PaymentTransitionEngine
from order_engine.core.revenue_split import RevenueSplitCalculator, TransferPlan, split_amount
from order_engine.database.models import Account
from order_engine.domain import PaymentStatus
from order_engine.integrations.stripe_client import StripeError, StripeErrorType

PROVIDER = AuthContext(actor_id="operator_1", provider_id="p1")


def _item(amount: int, mediated_by: Any = None) -> dict:
    return {
        "product_reference": "providers/p1/products/prod_1",
        "sku_reference": "providers/p1/products/prod_1/skus/sku_1",
        "quantity": 1,
        "amount": amount,
        "currency": "JPY",
        "mediated_by": mediated_by,
    }


@pytest.mark.unit
@pytest.mark.parametrize(
    "amount,expected",
    [(1000, 200), (999, 199), (4, 0), (0, 0), (123457, 24691)],
)
def test_split_amount_rounds_down(amount: int, expected: int) -> None:
    assert split_amount(amount, 0.2) == expected


@pytest.mark.unit
def test_transfer_idempotency_key() -> None:
    plan = TransferPlan("o1", 2, "m1", "acct_m1", 200, "JPY")
    assert plan.idempotency_key == "transfer:o1:2"


class TestRevenueSplitOnConfirm:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mediated_item_pays_intermediary(
        self,
        payment_engine: PaymentTransitionEngine,
        ledger: OrderLedger,
        stripe_client: AsyncMock,
        seed: Callable[..., Awaitable[None]],
    ) -> None:
        await seed(Account(id="m1", stripe_account_id="acct_m1"))
        await ledger.create_order(
            "o1", "u1", "p1", [_item(1000, "m1"), _item(500)], 1500, "JPY", payment_intent_id="pi_1"
        )

        response = await payment_engine.confirm_order(PROVIDER, "o1", "pi_1")

        assert response["result"]["payment_status"] == "succeeded"
        stripe_client.create_transfer.assert_awaited_once()
        kwargs = stripe_client.create_transfer.await_args.kwargs
        assert kwargs["amount"] == 200
        assert kwargs["currency"] == "JPY"
        assert kwargs["destination"] == "acct_m1"
        assert kwargs["transfer_group"] == "o1"
        assert kwargs["idempotency_key"] == "transfer:o1:0"
        assert kwargs["metadata"] == {"uid": "m1", "order_id": "o1"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_intermediary_without_account_is_skipped(
        self,
        payment_engine: PaymentTransitionEngine,
        ledger: OrderLedger,
        stripe_client: AsyncMock,
        seed: Callable[..., Awaitable[None]],
    ) -> None:
        await seed(Account(id="m2", stripe_account_id=None))
        await ledger.create_order(
            "o1",
            "u1",
            "p1",
            [_item(1000, "m1"), _item(1000, "m2")],
            2000,
            "JPY",
            payment_intent_id="pi_1",
        )

        response = await payment_engine.confirm_order(PROVIDER, "o1", "pi_1")

        assert response["result"]["payment_status"] == "succeeded"
        stripe_client.create_transfer.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_transfer_does_not_undo_confirm(
        self,
        payment_engine: PaymentTransitionEngine,
        ledger: OrderLedger,
        stripe_client: AsyncMock,
        seed: Callable[..., Awaitable[None]],
    ) -> None:
        await seed(Account(id="m1", stripe_account_id="acct_m1"))
        await ledger.create_order(
            "o1", "u1", "p1", [_item(1000, "m1")], 1000, "JPY", payment_intent_id="pi_1"
        )
        stripe_client.create_transfer.side_effect = StripeError(
            "Insufficient funds", StripeErrorType.PERMANENT, code="balance_insufficient"
        )

        response = await payment_engine.confirm_order(PROVIDER, "o1", "pi_1")

        assert response["result"]["payment_status"] == "succeeded"
        order = await ledger.get_order("o1", "p1")
        assert order.payment_status == PaymentStatus.SUCCEEDED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_declined_confirm_issues_no_transfer(
        self,
        payment_engine: PaymentTransitionEngine,
        ledger: OrderLedger,
        stripe_client: AsyncMock,
        seed: Callable[..., Awaitable[None]],
    ) -> None:
        await seed(Account(id="m1", stripe_account_id="acct_m1"))
        await ledger.create_order(
            "o1", "u1", "p1", [_item(1000, "m1")], 1000, "JPY", payment_intent_id="pi_1"
        )
        stripe_client.confirm_payment_intent.side_effect = StripeError(
            "Your card was declined.", StripeErrorType.DECLINED, code="card_declined"
        )

        await payment_engine.confirm_order(PROVIDER, "o1", "pi_1")

        stripe_client.create_transfer.assert_not_awaited()


class TestIssue:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_outcomes_report_each_transfer(self, stripe_client: AsyncMock) -> None:
        stripe_client.create_transfer.side_effect = [
            {"id": "tr_1"},
            StripeError("boom", StripeErrorType.TRANSIENT),
        ]
        calculator = RevenueSplitCalculator(stripe_client=stripe_client, split_rate=0.2)
        plans = [
            TransferPlan("o1", 0, "m1", "acct_m1", 200, "JPY"),
            TransferPlan("o1", 1, "m2", "acct_m2", 100, "JPY"),
        ]

        outcomes = await calculator.issue(plans)

        assert [o.issued for o in outcomes] == [True, False]
        assert outcomes[0].transfer_id == "tr_1"
        assert outcomes[1].error == "boom"
