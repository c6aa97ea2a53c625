from __future__ import annotations

from prometheus_client import Counter, Histogram

meeting_provision_failures_total = Counter(
    "liveclass_meeting_provision_failures_total",
    "Meeting rooms that could not be created, by scope.",
    ["scope"],
)
meeting_provision_retries_total = Counter(
    "liveclass_meeting_provision_retries_total",
    "Meeting creation attempts retried after a transient failure.",
)
meeting_teardown_failures_total = Counter(
    "liveclass_meeting_teardown_failures_total",
    "Meeting rooms whose remote deletion failed and may have leaked.",
)
payment_confirmations_total = Counter(
    "liveclass_payment_confirmations_total",
    "Verified payments recorded, by payment type.",
    ["payment_type"],
)
payment_duplicate_callbacks_total = Counter(
    "liveclass_payment_duplicate_callbacks_total",
    "Payment confirmations short-circuited because the payment id was already recorded.",
)
payment_signature_rejections_total = Counter(
    "liveclass_payment_signature_rejections_total",
    "Payment confirmations rejected for an invalid signature.",
)
subscription_transitions_total = Counter(
    "liveclass_subscription_transitions_total",
    "Subscription status transitions applied, by action.",
    ["action"],
)
request_latency_seconds = Histogram(
    "liveclass_request_latency_seconds",
    "HTTP request latency, by method, route template and status code.",
    ["method", "route", "status"],
)
