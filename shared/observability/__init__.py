from .setup import setup_observability, configure_logging
from .metrics import (
    payments_created_total,
    payment_status_transitions_total,
    payment_callbacks_total,
    gateway_errors_total,
    gateway_request_duration_seconds,
    fulfillments_total,
    saga_compensation_total,
)
