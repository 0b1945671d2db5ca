"""
Stripe API client with error classification and circuit breaking.

Implements:
- Idempotent confirm / cancel / refund / transfer calls
- Catalog mirroring that reports an explicit tagged result
- Circuit breaker pattern

The client never retries a processor call on its own; duplicate protection
across caller retries comes from the idempotency keys passed in.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import stripe
import structlog

from order_engine.config import get_settings
from order_engine.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

RESOURCE_MISSING = "resource_missing"


class StripeErrorType(Enum):
    """Classification of Stripe errors."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMIT = "rate_limit"
    DECLINED = "declined"  # definitive payment failure


class StripeError(Exception):
    """Classified processor error carrying Stripe's machine-readable code."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        code: Optional[str] = None,
        raw: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.code = code
        self.raw = raw
        self.original_error = original_error

    @property
    def is_definitive(self) -> bool:
        """True when the processor has finally refused the payment."""
        return self.error_type == StripeErrorType.DECLINED


class ProcessorOutcome(Enum):
    OK = "ok"
    RECOVERABLE_GAP = "recoverable_gap"
    FATAL = "fatal"


@dataclass(frozen=True)
class ProcessorResult:
    """Tagged result of a processor call whose failures are branched on."""

    outcome: ProcessorOutcome
    payload: Optional[Dict[str, Any]] = None
    error: Optional[StripeError] = None

    @classmethod
    def from_error(cls, error: StripeError) -> "ProcessorResult":
        if error.code == RESOURCE_MISSING:
            return cls(ProcessorOutcome.RECOVERABLE_GAP, error=error)
        return cls(ProcessorOutcome.FATAL, error=error)


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def call(self, func: Callable[[], Any]) -> Any:
        """
        Execute function with circuit breaker protection.

        Raises:
            StripeError: If circuit is open
        """
        if self.state == "open":
            if self.last_failure_time and time.time() - self.last_failure_time > self.timeout:
                self.state = "half_open"
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise StripeError("Circuit breaker is open", StripeErrorType.TRANSIENT)

        try:
            result = func()
        except stripe.CardError:
            # A declined card says nothing about processor health.
            self.on_success()
            raise
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.state = "closed"
                logger.info("circuit_breaker_closed")
        metrics.set_circuit_breaker_state(self.state)

    def on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self.state = "open"
            logger.warning("circuit_breaker_opened", failure_count=self.failure_count)
        metrics.set_circuit_breaker_state(self.state)


def _to_payload(obj: Any) -> Dict[str, Any]:
    """Plain-dict copy of a Stripe object for persistence."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeClient:
    """Wrapper for the Stripe API used by the order engine."""

    def __init__(self) -> None:
        settings = get_settings()
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = CircuitBreaker()

        logger.info(
            "stripe_client_initialized",
            api_version=stripe.api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        if isinstance(error, stripe.CardError):
            return StripeErrorType.DECLINED
        elif isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (stripe.InvalidRequestError, stripe.AuthenticationError, stripe.PermissionError),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _wrap_stripe_error(self, operation: str, error: stripe.StripeError) -> StripeError:
        error_type = self._classify_error(error)
        code = getattr(error, "code", None)
        raw = (getattr(error, "json_body", None) or {}).get("error")

        logger.error(
            "stripe_api_error",
            operation=operation,
            error_type=error_type.value,
            error_code=code,
            error_message=str(error),
        )
        metrics.record_processor_error(error_type.value)

        message = getattr(error, "user_message", None) or str(error)
        return StripeError(
            message=message,
            error_type=error_type,
            code=code,
            raw=raw,
            original_error=error,
        )

    def _call(self, operation: str, func: Callable[[], Any]) -> Dict[str, Any]:
        start = time.time()
        try:
            result = self.circuit_breaker.call(func)
        except stripe.StripeError as e:
            metrics.record_processor_call(operation, "error", time.time() - start)
            raise self._wrap_stripe_error(operation, e) from e
        metrics.record_processor_call(operation, "success", time.time() - start)
        return _to_payload(result)

    async def confirm_payment_intent(
        self, payment_intent_id: str, idempotency_key: str
    ) -> Dict[str, Any]:
        """
        Confirm a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID
            idempotency_key: Key that makes a retried confirm capture at most once

        Returns:
            Dict[str, Any]: Confirmed payment intent

        Raises:
            StripeError: If confirmation fails
        """
        logger.info(
            "confirming_payment_intent",
            payment_intent_id=payment_intent_id,
            idempotency_key=idempotency_key,
        )
        intent = self._call(
            "confirm",
            lambda: stripe.PaymentIntent.confirm(
                payment_intent_id, idempotency_key=idempotency_key
            ),
        )
        logger.info(
            "payment_intent_confirmed",
            payment_intent_id=intent.get("id"),
            status=intent.get("status"),
        )
        return intent

    async def cancel_payment_intent(
        self, payment_intent_id: str, idempotency_key: str
    ) -> Dict[str, Any]:
        """Cancel an uncaptured PaymentIntent."""
        logger.info("canceling_payment_intent", payment_intent_id=payment_intent_id)
        return self._call(
            "cancel",
            lambda: stripe.PaymentIntent.cancel(
                payment_intent_id, idempotency_key=idempotency_key
            ),
        )

    async def create_refund(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a refund for a captured payment.

        Args:
            payment_intent_id: Stripe PaymentIntent ID
            idempotency_key: Idempotency key
            amount: Optional partial refund amount
            reason: Optional refund reason

        Returns:
            Dict[str, Any]: Created refund
        """
        logger.info("creating_refund", payment_intent_id=payment_intent_id, amount=amount)

        kwargs: Dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount:
            kwargs["amount"] = amount
        if reason:
            kwargs["reason"] = reason

        refund = self._call(
            "refund",
            lambda: stripe.Refund.create(idempotency_key=idempotency_key, **kwargs),
        )
        logger.info("refund_created", refund_id=refund.get("id"), status=refund.get("status"))
        return refund

    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        transfer_group: str,
        idempotency_key: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Move funds to a connected account."""
        logger.info(
            "creating_transfer",
            amount=amount,
            currency=currency,
            destination=destination,
            transfer_group=transfer_group,
        )
        return self._call(
            "transfer",
            lambda: stripe.Transfer.create(
                amount=amount,
                currency=currency.lower(),
                destination=destination,
                transfer_group=transfer_group,
                description=description,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )

    async def create_catalog_item(self, sku: Dict[str, Any]) -> ProcessorResult:
        """
        Create the catalog mirror of a SKU, keyed by the SKU's own id.

        Returns:
            ProcessorResult: OK, RECOVERABLE_GAP (resource missing) or FATAL
        """
        try:
            item = self._call(
                "catalog_create",
                lambda: stripe.Product.create(
                    id=sku["id"],
                    name=sku.get("name") or sku["id"],
                    active=sku["is_available"],
                    default_price_data={
                        "currency": sku["currency"].lower(),
                        "unit_amount": sku["price"],
                    },
                    metadata=_catalog_metadata(sku),
                ),
            )
        except StripeError as e:
            return ProcessorResult.from_error(e)
        return ProcessorResult(ProcessorOutcome.OK, payload=item)

    async def update_catalog_item(self, sku: Dict[str, Any]) -> ProcessorResult:
        """
        Update the catalog mirror of a SKU.

        Stripe prices are immutable, so price and currency travel in metadata
        alongside inventory.
        """
        try:
            item = self._call(
                "catalog_update",
                lambda: stripe.Product.modify(
                    sku["id"],
                    active=sku["is_available"],
                    metadata=_catalog_metadata(sku),
                ),
            )
        except StripeError as e:
            return ProcessorResult.from_error(e)
        return ProcessorResult(ProcessorOutcome.OK, payload=item)

    async def create_external_account(
        self, account_id: str, params: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Attach a bank account or debit card to a connected account."""
        logger.info("creating_external_account", account_id=account_id)
        return self._call(
            "external_account",
            lambda: stripe.Account.create_external_account(account_id, **params),
        )


def _catalog_metadata(sku: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "sku_path": sku["path"],
        "product_path": sku["product_path"],
        "product_id": sku["product_id"],
        "inventory": sku["inventory"],
        "price": sku["price"],
        "currency": sku["currency"],
    }
