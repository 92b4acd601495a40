"""
Client for the crypto payment gateway (Plisio REST API).

Every call carries the merchant API key and a bounded timeout; any network
failure, timeout or non-"success" envelope is raised as ``GatewayError``
carrying the provider's message when it sent one.
"""
import time
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from shared.config.settings import (
    APP_URL,
    GATEWAY_TIMEOUT_SECONDS,
    PLISIO_API_KEY,
    PLISIO_BASE_URL,
    SETTLEMENT_CURRENCY,
)
from shared.errors import GatewayConfigError, GatewayError, ValidationError
from shared.observability import gateway_errors_total, gateway_request_duration_seconds

from .schemas import InvoiceData, StatusInfo

log = structlog.get_logger(__name__)

# The operations listing is paged; a status lookup filters by id and reads
# at most this many entries.
OPERATIONS_LOOKUP_LIMIT = 25


def default_invoice_params(callback_base_url: str = APP_URL, currency: str = SETTLEMENT_CURRENCY) -> Dict[str, Any]:
    return {
        "currency": currency,
        "source_currency": "USD",
        "language": "en",
        "allow_anonymous": False,
        "plisio_fee_to_user": False,
        "timeout": 1440,  # minutes
        "callback_url": f"{callback_base_url}/payments/callback?json=true",
    }


def _provider_message(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    if body.get("message"):
        return str(body["message"])
    return None


class GatewayClient:
    def __init__(
        self,
        api_key: str = PLISIO_API_KEY,
        base_url: str = PLISIO_BASE_URL,
        callback_base_url: str = APP_URL,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise GatewayConfigError("PLISIO_API_KEY is not set; the payment gateway cannot be used")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.callback_base_url = callback_base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, operation: str, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {**params, "api_key": self.api_key}
        started = time.perf_counter()
        try:
            resp = await self._get_client().get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            gateway_errors_total.labels(operation=operation).inc()
            log.error("gateway_timeout", operation=operation, error=str(exc))
            raise GatewayError("Payment gateway timed out") from exc
        except httpx.HTTPError as exc:
            gateway_errors_total.labels(operation=operation).inc()
            log.error("gateway_unreachable", operation=operation, error=str(exc))
            raise GatewayError(f"Payment gateway unreachable: {exc}") from exc
        finally:
            gateway_request_duration_seconds.labels(operation=operation).observe(time.perf_counter() - started)

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code >= 400 or not isinstance(body, dict) or body.get("status") != "success":
            gateway_errors_total.labels(operation=operation).inc()
            message = _provider_message(body) or f"Payment gateway returned HTTP {resp.status_code}"
            log.error("gateway_rejected", operation=operation, http_status=resp.status_code, provider_message=message)
            raise GatewayError(message)
        return body

    def build_invoice_params(self, order_number: str, amount: Decimal, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = {
            **default_invoice_params(self.callback_base_url),
            **(extra or {}),
            "order_number": order_number,
            "amount": str(amount),
        }
        # Drop unset values so the gateway applies its own defaults
        return {k: v for k, v in params.items() if v is not None}

    async def create_invoice(self, order_number: str, amount, extra: Optional[Dict[str, Any]] = None) -> InvoiceData:
        if not order_number or amount is None:
            raise ValidationError("order_number and amount are required to create an invoice")

        params = self.build_invoice_params(order_number, amount, extra)
        log.info("gateway_invoice_requested", order_number=order_number, amount=params["amount"], currency=params.get("currency"))
        body = await self._get("create_invoice", "/invoices/new", params)

        try:
            invoice = InvoiceData.model_validate(body.get("data") or {})
        except PydanticValidationError as exc:
            gateway_errors_total.labels(operation="create_invoice").inc()
            log.error("gateway_invoice_malformed", order_number=order_number, error=str(exc))
            raise GatewayError("Payment gateway returned an incomplete invoice") from exc

        log.info("gateway_invoice_created", order_number=order_number, txn_id=invoice.txn_id)
        return invoice

    async def query_status(self, invoice_id: str, order_number: Optional[str] = None) -> StatusInfo:
        """Find one transaction in the operations listing.

        The gateway has no single-operation lookup, so the listing is
        filtered by id and bounded to ``OPERATIONS_LOOKUP_LIMIT`` entries.
        """
        if not invoice_id:
            raise ValidationError("invoice_id is required to query a payment status")

        params: Dict[str, Any] = {"search": invoice_id, "limit": OPERATIONS_LOOKUP_LIMIT}
        if order_number:
            params["order_id"] = order_number
        body = await self._get("query_status", "/operations", params)

        data = body.get("data")
        operations = data.get("operations") if isinstance(data, dict) else None
        for entry in operations or []:
            if not isinstance(entry, dict):
                continue
            if str(entry.get("txn_id") or entry.get("id") or "") != invoice_id:
                continue
            try:
                return StatusInfo.model_validate(entry)
            except PydanticValidationError as exc:
                raise GatewayError(f"Payment gateway returned a malformed operation for {invoice_id}") from exc

        gateway_errors_total.labels(operation="query_status").inc()
        log.warning("gateway_operation_not_listed", txn_id=invoice_id)
        raise GatewayError(f"Transaction {invoice_id} not found at the payment gateway")
