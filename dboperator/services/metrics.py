"""
Prometheus metrics for the reconcile loop and work queue.

Deferrals (closed maintenance window, running restore) are counted under
result="deferred" so they never show up as failures.
"""
from prometheus_client import Counter, Gauge, Histogram

# Reconcile metrics
reconcile_total = Counter(
    "dboperator_reconcile_total",
    "Total number of reconciliation attempts",
    ["result"],
)

reconcile_duration_seconds = Histogram(
    "dboperator_reconcile_duration_seconds",
    "Time spent in one reconciliation attempt",
    ["result"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120),
)

reconcile_errors_total = Counter(
    "dboperator_reconcile_errors_total",
    "Reconciliation failures by reason code",
    ["reason"],
)

phase_transitions_total = Counter(
    "dboperator_phase_transitions_total",
    "Database phase transitions",
    ["from_phase", "to_phase"],
)

# Queue metrics
queue_depth = Gauge(
    "dboperator_queue_depth",
    "Number of keys waiting in the work queue",
)

queue_processing = Gauge(
    "dboperator_queue_processing",
    "Number of keys currently being reconciled",
)

queue_retries_total = Counter(
    "dboperator_queue_retries_total",
    "Keys re-queued with failure backoff",
)

# Rotation / job metrics
rotation_transitions_total = Counter(
    "dboperator_rotation_transitions_total",
    "Credential rotation phase transitions",
    ["to_phase"],
)

execution_failures_total = Counter(
    "dboperator_execution_failures_total",
    "Execution units that reported failure",
    ["reason"],
)

leader = Gauge(
    "dboperator_leader",
    "Whether this instance currently holds the leader lease",
)
