"""Prometheus metrics for the Styra Operator."""

import threading

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "styra_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "styra_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

reconcile_segment_seconds = Histogram(
    "styra_operator_reconcile_segment_seconds",
    "Duration of individual reconcile phases in seconds",
    ["segment"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

error_total = Counter(
    "styra_operator_error_total",
    "Total number of reconcile errors",
    ["kind", "error_type"],
)

# System readiness
system_status_ready = Gauge(
    "controller_system_status_ready",
    "Whether a System is ready (1) or not (0)",
    ["system_name", "namespace", "system_id"],
)

# API call metrics
api_call_total = Counter(
    "styra_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "styra_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

user_cache_total = Counter(
    "styra_operator_user_cache_total",
    "User directory lookups by cache outcome",
    ["result"],
)


# System id last exported per (name, namespace)
_ready_ids: dict[tuple[str, str], str] = {}
_ready_lock = threading.Lock()


def _remove_ready(name: str, namespace: str, system_id: str) -> None:
    try:
        system_status_ready.remove(name, namespace, system_id)
    except KeyError:
        pass


def set_system_ready(name: str, namespace: str, system_id: str, ready: bool) -> None:
    """Record the readiness gauge for a System.

    The series of a previous system id of the same System is removed, so a
    System first reported without an id keeps a single series.
    """
    with _ready_lock:
        previous = _ready_ids.get((name, namespace))
        if previous is not None and previous != system_id:
            _remove_ready(name, namespace, previous)
        _ready_ids[(name, namespace)] = system_id
        system_status_ready.labels(
            system_name=name, namespace=namespace, system_id=system_id
        ).set(1 if ready else 0)


def delete_system_ready(name: str, namespace: str, system_id: str) -> None:
    """Remove the readiness gauge for a System."""
    with _ready_lock:
        previous = _ready_ids.pop((name, namespace), None)
        if previous is not None and previous != system_id:
            _remove_ready(name, namespace, previous)
        _remove_ready(name, namespace, system_id)
