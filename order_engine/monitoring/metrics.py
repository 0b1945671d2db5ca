"""
Prometheus metrics for the order engine.

Tracks:
- Payment transitions by operation and outcome
- Processor calls, errors and latency
- Revenue split transfers
- Catalog mirror outcomes
- Ledger transaction retries
- Outbox queue depth
"""
from prometheus_client import Counter, Gauge, Histogram

order_transitions_total = Counter(
    "order_transitions_total",
    "Payment transition attempts",
    ["operation", "outcome"],  # outcome: succeeded, conflict, processor_error, payment_failed
)

order_transition_duration_seconds = Histogram(
    "order_transition_duration_seconds",
    "Payment transition duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

ledger_transaction_retries_total = Counter(
    "ledger_transaction_retries_total",
    "Ledger transactions retried after a store abort",
)

processor_requests_total = Counter(
    "processor_requests_total",
    "Total Stripe API requests",
    ["operation", "status"],
)

processor_errors_total = Counter(
    "processor_errors_total",
    "Total Stripe API errors",
    ["error_type"],  # transient, permanent, rate_limit, declined
)

processor_duration_seconds = Histogram(
    "processor_duration_seconds",
    "Stripe API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

processor_circuit_breaker_state = Gauge(
    "processor_circuit_breaker_state",
    "Stripe circuit breaker state (0=closed, 1=open, 2=half_open)",
)

revenue_split_transfers_total = Counter(
    "revenue_split_transfers_total",
    "Revenue split transfers",
    ["status"],  # issued, failed, skipped_no_account
)

catalog_sync_total = Counter(
    "catalog_sync_total",
    "Catalog mirror attempts",
    ["trigger", "outcome"],  # outcome: ok, recoverable_gap, fatal, skipped
)

outbox_queue_depth = Gauge(
    "outbox_queue_depth",
    "Number of undispatched events in outbox",
)

outbox_events_dispatched_total = Counter(
    "outbox_events_dispatched_total",
    "Total outbox events dispatched",
    ["event_type", "status"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_transition(operation: str, outcome: str, duration_seconds: float) -> None:
        order_transitions_total.labels(operation=operation, outcome=outcome).inc()
        order_transition_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_ledger_retry() -> None:
        ledger_transaction_retries_total.inc()

    @staticmethod
    def record_processor_call(operation: str, status: str, duration_seconds: float) -> None:
        processor_requests_total.labels(operation=operation, status=status).inc()
        processor_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_processor_error(error_type: str) -> None:
        processor_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        processor_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_transfer(status: str) -> None:
        revenue_split_transfers_total.labels(status=status).inc()

    @staticmethod
    def record_catalog_sync(trigger: str, outcome: str) -> None:
        catalog_sync_total.labels(trigger=trigger, outcome=outcome).inc()

    @staticmethod
    def set_outbox_queue_depth(depth: int) -> None:
        outbox_queue_depth.set(depth)

    @staticmethod
    def record_outbox_dispatch(event_type: str, status: str) -> None:
        outbox_events_dispatched_total.labels(event_type=event_type, status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
