"""Application metrics using the Prometheus client library.

All metrics are defined here, in one inventory.  Other modules import the
metric they own and increment/observe it at the point of action.

ENGINE METRICS
----------------
  units_unlocked_total{trigger}
    Every locked→unlocked transition, labelled by what caused it
    (unit_created, video_created, enrolled, quiz_passed, recalculate).
    A recalculation that keeps unlocking units in steady state means an
    incremental trigger is missing transitions:

      rate(units_unlocked_total{trigger="recalculate"}[1h]) > 0

  propagation_failures_total{trigger}
    Per-student failures that were logged and skipped.  These students
    are left for the next recalculation to repair.

  recalculation_duration_seconds
    Wall-clock time of a full recalculation.  The run is
    O(students × units), so this grows with enrollment.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Unlock engine metrics
# ---------------------------------------------------------------------------

UNITS_UNLOCKED = Counter(
    "units_unlocked_total",
    "Unit entries that transitioned from locked/absent to unlocked",
    ["trigger"],
)

PROPAGATION_FAILURES = Counter(
    "propagation_failures_total",
    "Per-student propagation failures that were logged and skipped",
    ["trigger"],
)

RECALCULATION_DURATION = Histogram(
    "recalculation_duration_seconds",
    "Duration of a full unit-access recalculation for one course",
    # Admin-triggered maintenance runs: seconds, not milliseconds.
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Student view cache operations by outcome",
    ["operation"],  # hit|miss|error
)
