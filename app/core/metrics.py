"""Application metrics using the Prometheus client library.

All metrics are defined here, in one inventory.  Other modules import the
specific metric they own and increment/observe it at the point of action.

HTTP metrics are populated by MetricsMiddleware for every request.  The
billing metrics answer the operational questions for this service:

  - "Did last night's renewal pass run, and how long did it take?"
      renewal_pass_duration_seconds, renewal_pass_failures_total
  - "How many subscriptions renewed / failed / were canceled?"
      renewal_attempts_total{outcome}
  - "Are users hitting the upgrade wall?"
      entitlement_checks_total{feature, allowed, reason}

Alerting on renewal_pass_failures_total > 0 covers the fatal cases
(missing provider credentials, candidate query failing).
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
# Billing metrics
# ---------------------------------------------------------------------------

RENEWAL_ATTEMPTS = Counter(
    "renewal_attempts_total",
    "Per-subscription renewal outcomes",
    ["outcome"],  # "renewed", "failed", "canceled", "skipped"
)

RENEWAL_PASS_DURATION = Histogram(
    "renewal_pass_duration_seconds",
    "Wall-clock duration of one renewal pass",
    # A pass makes one provider call per due subscription, so it is
    # measured in seconds to minutes rather than milliseconds.
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

RENEWAL_PASS_FAILURES = Counter(
    "renewal_pass_failures_total",
    "Renewal pass steps that failed: aborted passes and skipped expiry sweeps",
    ["reason"],  # "configuration", "candidate_query", "expiry_query"
)

PAYMENT_CHARGE_DURATION = Histogram(
    "payment_charge_duration_seconds",
    "Latency of calls to the payment provider charge endpoint",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

ENTITLEMENT_CHECKS = Counter(
    "entitlement_checks_total",
    "Entitlement decisions by feature and result",
    ["feature", "allowed", "reason"],
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
