from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "HTTP requests that ended in a server error",
    ["method", "path", "status"],
)

CHECKOUT_RESULTS = Counter(
    "checkout_results_total",
    "Checkout attempts by outcome",
    ["outcome"],
)
PROMOTION_FAILURES = Counter(
    "promotion_failures_total",
    "Coupon lookups or creations that failed and were skipped",
)
WEBHOOK_EVENTS = Counter(
    "webhook_events_total",
    "Verified Stripe webhook events by type and outcome",
    ["event_type", "outcome"],
)
PROMOTION_TRANSITIONS = Counter(
    "promotion_transitions_total",
    "Promotional subscriptions advanced by a paid invoice",
    ["transition"],
)
