class PaymentCoreError(Exception):
    """Base for expected failures of the payment core.

    ``code`` is stable and is what callers (bot, HTTP routes) branch on.
    """

    code = "payment_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(PaymentCoreError):
    code = "validation_error"


class GatewayError(PaymentCoreError):
    code = "gateway_error"


class GatewayConfigError(GatewayError):
    code = "gateway_config_error"


class NotFoundError(PaymentCoreError):
    code = "not_found"


class StoreError(PaymentCoreError):
    code = "store_error"


class FulfillmentError(PaymentCoreError):
    code = "fulfillment_error"


class FulfillmentClaimedError(FulfillmentError):
    """Another worker already owns (or finished) fulfillment for this payment."""

    code = "fulfillment_claimed"


class InvalidCallbackError(PaymentCoreError):
    code = "invalid_callback"


class CallbackSignatureError(InvalidCallbackError):
    code = "invalid_signature"
