"""Application metrics using the Prometheus client library.

Every metric the service exposes is defined here; other modules import
them and increment at the point of action.

Purchase metrics answer the questions an on-call engineer asks when the
webhook source starts misbehaving:

  - Are redeliveries being absorbed?
      purchases_processed_total{outcome="already_processed"}
  - Are concurrent duplicates actually racing?
      unique_violations_recovered_total{record=...}
  - Is the store failing (and the source retrying)?
      purchase_failures_total{error="storage"}
  - Are welcome emails getting lost?
      welcome_notifications_total{result="failed"}
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (recorded by MetricsMiddleware)
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
    # A purchase does 4-6 store round-trips plus one argon2 hash for new
    # accounts, so the interesting range sits between 25ms and 1s.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Purchase pipeline metrics
# ---------------------------------------------------------------------------

PURCHASES_PROCESSED = Counter(
    "purchases_processed_total",
    "Purchase events handled by the pipeline, by outcome kind",
    # created_and_enrolled|enrolled_existing_account|already_enrolled|already_processed
    ["outcome"],
)

PURCHASE_FAILURES = Counter(
    "purchase_failures_total",
    "Purchase events rejected or aborted, by error type",
    ["error"],  # validation|not_found|storage|internal
)

UNIQUE_VIOLATIONS_RECOVERED = Counter(
    "unique_violations_recovered_total",
    "Inserts that lost a uniqueness race and converged on the winner's row",
    ["record"],  # account|enrollment|ledger
)

WELCOME_NOTIFICATIONS = Counter(
    "welcome_notifications_total",
    "Welcome notifications dispatched, by result",
    ["result"],  # queued|failed|sent|logged
)

# ---------------------------------------------------------------------------
# Background worker metrics
# ---------------------------------------------------------------------------

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
