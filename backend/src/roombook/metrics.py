"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Total gateway webhook events handled",
    labelnames=["family", "semantics", "outcome"],  # outcome: processed, ignored, blocked, failed, duplicate
)

webhook_duplicates_total = Counter(
    "webhook_duplicates_total",
    "Total redelivered webhook events short-circuited by the ledger",
    labelnames=["reason"],  # terminal, in_progress
)

webhook_replays_total = Counter(
    "webhook_replays_total",
    "Total ledger events re-dispatched by the replay worker",
    labelnames=["outcome"],
)

# Refund metrics
refunds_recorded_total = Counter(
    "refunds_recorded_total",
    "Total booking refunds reconciled",
    labelnames=["kind"],  # full, partial, unknown_amount
)

refund_amount_total = Counter(
    "refund_amount_total",
    "Total refunded amount in centavos",
    labelnames=["leg"],  # credits, money
)

# Credit metrics
credits_minted_total = Counter(
    "credits_minted_total",
    "Total credits minted from package purchases",
    labelnames=["usage_type"],
)

credits_restored_amount_total = Counter(
    "credits_restored_amount_total",
    "Total credit balance restored by refunds in centavos",
)

# Side-effect metrics
side_effects_total = Counter(
    "side_effects_total",
    "Total post-commit side effects attempted",
    labelnames=["effect", "status"],  # status: success, skipped, failed, timeout
)
