from prometheus_client import Counter, Histogram

# Business Metrics
payments_created_total = Counter(
    "payments_created_total",
    "Payment intents requested",
    ["outcome"] # Labels: 'created', 'gateway_error', 'store_error', 'invalid'
)

payment_status_transitions_total = Counter(
    "payment_status_transitions_total",
    "Persisted payment status changes",
    ["status", "source"] # source: 'poll' or 'callback'
)

payment_callbacks_total = Counter(
    "payment_callbacks_total",
    "Inbound gateway callbacks",
    ["outcome"] # Labels: 'applied', 'not_found', 'invalid', 'rejected'
)

gateway_errors_total = Counter(
    "gateway_errors_total",
    "Failed calls to the crypto payment gateway",
    ["operation"] # Labels: 'create_invoice', 'query_status'
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Latency of crypto payment gateway calls",
    ["operation"]
)

fulfillments_total = Counter(
    "fulfillments_total",
    "Voucher fulfillment attempts against the partner order API",
    ["outcome"] # Labels: 'fulfilled', 'failed', 'skipped'
)

saga_compensation_total = Counter(
    "saga_compensation_total",
    "Total saga compensations triggered",
    ["step_name"]
)
