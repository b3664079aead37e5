"""Monitoring configuration for the progress engine."""
from prometheus_client import Counter, start_http_server

# Review metrics
reviews_total = Counter(
    "fluentwork_reviews_total",
    "Total number of review outcomes applied",
    ["outcome"],
)

words_learned = Counter(
    "fluentwork_words_learned_total",
    "Total number of reviews that brought an item to full mastery",
)

# Store metrics
store_errors = Counter(
    "fluentwork_store_errors_total",
    "Total number of failed store operations",
    ["backend"],
)

store_operations = Counter(
    "fluentwork_store_operations_total",
    "Total number of store operations",
    ["backend", "operation_type"],
)

# Reconciliation metrics
reconciler_notifications = Counter(
    "fluentwork_reconciler_notifications_total",
    "Total number of change notifications applied",
    ["event_type"],
)

stale_notifications = Counter(
    "fluentwork_stale_notifications_total",
    "Total number of change notifications suppressed as stale",
)

dropped_notifications = Counter(
    "fluentwork_dropped_notifications_total",
    "Total number of malformed change notifications dropped",
)

# Oracle metrics
oracle_fallbacks = Counter(
    "fluentwork_oracle_fallbacks_total",
    "Total number of oracle calls answered by the built-in fallback",
    ["operation"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
