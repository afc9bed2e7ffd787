"""Prometheus metrics for decisions, events, loan lifecycle and integrity checks"""

import functools

from prometheus_client import Counter, Histogram

# Audit trail
decision_counter = Counter(
    "trustlend_decisions_total",
    "Automated decisions recorded",
    ["decision_type"],
)

event_counter = Counter(
    "trustlend_events_total",
    "Events appended to the event log",
    ["event_type"],
)

integrity_violation_counter = Counter(
    "trustlend_integrity_violations_total",
    "Stored hashes that failed re-verification",
    ["kind"],  # event | decision | parameters
)

# Lifecycle
loan_transition_counter = Counter(
    "trustlend_loan_transitions_total",
    "Loan state transitions",
    ["to_state"],
)

fraud_alert_counter = Counter(
    "trustlend_fraud_alerts_total",
    "Fraud alerts raised",
    ["fraud_type", "severity"],
)

# Storage
storage_failure_counter = Counter(
    "trustlend_storage_failures_total",
    "Transactions aborted because storage was unavailable",
)

operation_duration_histogram = Histogram(
    "trustlend_operation_duration_seconds",
    "Ledger operation latency",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)


def record_fraud_alert(fraud_type: str, severity: str) -> None:
    fraud_alert_counter.labels(fraud_type=fraud_type, severity=severity).inc()


def record_loan_transition(to_state: str) -> None:
    loan_transition_counter.labels(to_state=to_state).inc()


def timed(operation: str):
    """Decorator observing the wrapped call in operation_duration_histogram"""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with operation_duration_histogram.labels(operation=operation).time():
                return func(*args, **kwargs)

        return wrapper

    return decorator
