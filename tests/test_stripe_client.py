"""
Unit tests for the Stripe client wrapper.
"""
from typing import Any

import pytest
import stripe

from order_engine.integrations.stripe_client import (
    CircuitBreaker,
    ProcessorOutcome,
    ProcessorResult,
    StripeClient,
    StripeError,
    StripeErrorType,
)

SKU_PAYLOAD = {
    "id": "sku_1",
    "product_id": "prod_1",
    "provider_id": "p1",
    "name": "Tee / M",
    "inventory": 5,
    "price": 1000,
    "currency": "JPY",
    "is_available": True,
    "path": "providers/p1/products/prod_1/skus/sku_1",
    "product_path": "providers/p1/products/prod_1",
}


@pytest.fixture
def client() -> StripeClient:
    return StripeClient()


class TestErrorClassification:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "error,expected",
        [
            (stripe.CardError("declined", None, "card_declined"), StripeErrorType.DECLINED),
            (stripe.RateLimitError("slow down"), StripeErrorType.RATE_LIMIT),
            (stripe.APIConnectionError("reset"), StripeErrorType.TRANSIENT),
            (stripe.APIError("500"), StripeErrorType.TRANSIENT),
            (stripe.InvalidRequestError("bad", "amount"), StripeErrorType.PERMANENT),
            (stripe.AuthenticationError("bad key"), StripeErrorType.PERMANENT),
        ],
    )
    def test_classify(self, error: stripe.StripeError, expected: StripeErrorType) -> None:
        assert StripeClient._classify_error(error) == expected

    @pytest.mark.unit
    def test_only_declines_are_definitive(self) -> None:
        assert StripeError("x", StripeErrorType.DECLINED).is_definitive
        assert not StripeError("x", StripeErrorType.TRANSIENT).is_definitive
        assert not StripeError("x", StripeErrorType.PERMANENT).is_definitive

    @pytest.mark.unit
    def test_resource_missing_is_recoverable_gap(self) -> None:
        gap = ProcessorResult.from_error(
            StripeError("No such product", StripeErrorType.PERMANENT, code="resource_missing")
        )
        fatal = ProcessorResult.from_error(
            StripeError("Bad request", StripeErrorType.PERMANENT, code="parameter_missing")
        )

        assert gap.outcome is ProcessorOutcome.RECOVERABLE_GAP
        assert fatal.outcome is ProcessorOutcome.FATAL
        assert fatal.error.code == "parameter_missing"


class TestStripeCalls:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_confirm_passes_idempotency_key(self, client: StripeClient, mocker: Any) -> None:
        confirm = mocker.patch.object(
            stripe.PaymentIntent, "confirm", return_value={"id": "pi_1", "status": "succeeded"}
        )

        intent = await client.confirm_payment_intent("pi_1", idempotency_key="o1")

        assert intent == {"id": "pi_1", "status": "succeeded"}
        confirm.assert_called_once_with("pi_1", idempotency_key="o1")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_declined_confirm_is_definitive(self, client: StripeClient, mocker: Any) -> None:
        body = {"error": {"message": "Your card was declined.", "code": "card_declined"}}
        mocker.patch.object(
            stripe.PaymentIntent,
            "confirm",
            side_effect=stripe.CardError(
                "Your card was declined.", None, "card_declined", json_body=body
            ),
        )

        with pytest.raises(StripeError) as exc_info:
            await client.confirm_payment_intent("pi_1", idempotency_key="o1")

        assert exc_info.value.is_definitive
        assert exc_info.value.code == "card_declined"
        assert exc_info.value.raw == body["error"]
        # A decline is not a processor outage.
        assert client.circuit_breaker.failure_count == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transfer_request(self, client: StripeClient, mocker: Any) -> None:
        create = mocker.patch.object(stripe.Transfer, "create", return_value={"id": "tr_1"})

        await client.create_transfer(
            amount=200,
            currency="JPY",
            destination="acct_m1",
            transfer_group="o1",
            idempotency_key="transfer:o1:0",
        )

        kwargs = create.call_args.kwargs
        assert kwargs["currency"] == "jpy"
        assert kwargs["transfer_group"] == "o1"
        assert kwargs["idempotency_key"] == "transfer:o1:0"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_catalog_create_keyed_by_sku_id(self, client: StripeClient, mocker: Any) -> None:
        create = mocker.patch.object(stripe.Product, "create", return_value={"id": "sku_1"})

        result = await client.create_catalog_item(SKU_PAYLOAD)

        assert result.outcome is ProcessorOutcome.OK
        kwargs = create.call_args.kwargs
        assert kwargs["id"] == "sku_1"
        assert kwargs["default_price_data"] == {"currency": "jpy", "unit_amount": 1000}
        assert kwargs["metadata"]["sku_path"] == SKU_PAYLOAD["path"]
        assert kwargs["metadata"]["inventory"] == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_catalog_update_missing_resource(self, client: StripeClient, mocker: Any) -> None:
        mocker.patch.object(
            stripe.Product,
            "modify",
            side_effect=stripe.InvalidRequestError("No such product: 'sku_1'", "id", code="resource_missing"),
        )

        result = await client.update_catalog_item(SKU_PAYLOAD)

        assert result.outcome is ProcessorOutcome.RECOVERABLE_GAP

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_catalog_update_other_error_is_fatal(self, client: StripeClient, mocker: Any) -> None:
        mocker.patch.object(
            stripe.Product, "modify", side_effect=stripe.APIConnectionError("connection reset")
        )

        result = await client.update_catalog_item(SKU_PAYLOAD)

        assert result.outcome is ProcessorOutcome.FATAL
        assert result.error.error_type is StripeErrorType.TRANSIENT


class TestCircuitBreaker:
    @pytest.mark.unit
    def test_opens_after_threshold(self) -> None:
        breaker = CircuitBreaker(failure_threshold=2, timeout=60)

        def failing() -> None:
            raise stripe.APIConnectionError("reset")

        for _ in range(2):
            with pytest.raises(stripe.APIConnectionError):
                breaker.call(failing)

        assert breaker.state == "open"
        with pytest.raises(StripeError, match="Circuit breaker is open"):
            breaker.call(lambda: None)

    @pytest.mark.unit
    def test_half_open_closes_after_successes(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1, timeout=0, success_threshold=2)

        def failing() -> None:
            raise stripe.APIConnectionError("reset")

        with pytest.raises(stripe.APIConnectionError):
            breaker.call(failing)
        assert breaker.state == "open"

        breaker.last_failure_time = 1.0
        breaker.call(lambda: "ok")
        assert breaker.state == "half_open"
        breaker.call(lambda: "ok")
        assert breaker.state == "closed"
