"""
Payment lifecycle: invoice creation, status reconciliation (poll and push)
and the hand-off to voucher fulfillment.

Status moves new/pending -> completed | mismatch | expired | cancelled |
failed and never leaves a terminal state. The first transition into a
success status is the one and only automatic fulfillment trigger; a
per-order lock serializes reconciliation in this process and the store's
fulfillment claim covers other processes.

Public methods return a ``ServiceResult`` and never raise.
"""
import uuid
from typing import Any, Dict, Optional, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import APP_URL, LOCAL_CURRENCY, SETTLEMENT_CURRENCY
from shared.errors import (
    CallbackSignatureError,
    FulfillmentClaimedError,
    FulfillmentError,
    GatewayError,
    InvalidCallbackError,
    NotFoundError,
    PaymentCoreError,
    StoreError,
    ValidationError,
)
from shared.observability import (
    payment_callbacks_total,
    payment_status_transitions_total,
    payments_created_total,
)
from shared.security.webhook_signature import CallbackSignatureVerifier

from .currency import CurrencyConverter, converter as default_converter, quantize_amount, to_decimal
from .gateway import GatewayClient
from .locks import KeyedLocks
from .repository import PaymentRepository
from .schemas import CallbackPayload, PaymentRecord, PaymentSummary, ServiceResult
from .status import PaymentStatus, can_transition, is_success, normalize_status

log = structlog.get_logger(__name__)

PAYMENT_SOURCE = "gift-card-store"


def new_order_id() -> str:
    return f"order_{uuid.uuid4()}"


def _internal_failure(operation: str) -> ServiceResult:
    log.exception("payment_operation_crashed", operation=operation)
    return ServiceResult(success=False, error=f"Failed to {operation.replace('_', ' ')}", error_code="internal_error")


class PaymentService:
    def __init__(
        self,
        gateway: GatewayClient,
        fulfillment=None,
        verifier: Optional[CallbackSignatureVerifier] = None,
        converter: Optional[CurrencyConverter] = None,
        settlement_currency: str = SETTLEMENT_CURRENCY,
        local_currency: str = LOCAL_CURRENCY,
        app_url: str = APP_URL,
    ):
        self.gateway = gateway
        self.fulfillment = fulfillment
        self.verifier = verifier
        self.converter = converter or default_converter
        self.settlement_currency = settlement_currency
        self.local_currency = local_currency
        self.app_url = app_url.rstrip("/")
        self._locks = KeyedLocks()

    # --- createPayment ---

    async def create_payment(
        self,
        db: AsyncSession,
        user_id,
        amount,
        local_amount=None,
        currency: Optional[str] = None,
        email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ServiceResult:
        try:
            summary = await self._create_payment(db, user_id, amount, local_amount, currency, email, metadata)
        except PaymentCoreError as exc:
            if isinstance(exc, GatewayError):
                outcome = "gateway_error"
            elif isinstance(exc, StoreError):
                outcome = "store_error"
            else:
                outcome = "invalid"
            payments_created_total.labels(outcome=outcome).inc()
            return ServiceResult.fail(exc)
        except Exception:
            payments_created_total.labels(outcome="internal_error").inc()
            return _internal_failure("create_payment")

        payments_created_total.labels(outcome="created").inc()
        return ServiceResult.ok(summary)

    def _invoice_extra(self, order_id: str, user_id: str, amount, currency: str, email: Optional[str]) -> Dict[str, Any]:
        return {
            "currency": currency,
            "order_name": f"Gift Card Purchase - {order_id}",
            "description": f"Gift Card Purchase - {amount} {currency}",
            "email": email or f"user-{user_id}@giftcardstore.com",
            "success_url": f"{self.app_url}/payment/success?orderId={order_id}",
            "cancel_url": f"{self.app_url}/payment/cancel?orderId={order_id}",
        }

    async def _create_payment(self, db, user_id, amount, local_amount, currency, email, metadata) -> PaymentSummary:
        user_id = "" if user_id is None else str(user_id).strip()
        if not user_id:
            raise ValidationError("User ID is required")
        if amount is None:
            raise ValidationError("Amount is required")

        currency = (currency or self.settlement_currency).upper()
        value = to_decimal(amount)
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be greater than zero")
        requested = quantize_amount(value, currency)
        if requested == 0:
            raise ValidationError(f"Amount is below the smallest {currency} unit")

        if local_amount is None:
            fiat = to_decimal(self.converter.convert(requested, currency, self.local_currency))
        else:
            fiat = to_decimal(local_amount)
        if not fiat.is_finite() or fiat < 0:
            raise ValidationError("Local amount cannot be negative")
        fiat = quantize_amount(fiat, self.local_currency)

        order_id = new_order_id()
        invoice = await self.gateway.create_invoice(
            order_id, requested, self._invoice_extra(order_id, user_id, requested, currency, email)
        )

        # The gateway's invoice total is what the customer is actually asked to pay
        invoiced = requested
        if invoice.invoice_total_sum is not None and invoice.invoice_total_sum >= 0:
            invoiced = quantize_amount(invoice.invoice_total_sum, currency)

        record = PaymentRecord(
            id=str(uuid.uuid4()),
            order_id=order_id,
            user_id=user_id,
            amount=invoiced,
            local_amount=fiat,
            currency=currency,
            local_currency=self.local_currency,
            status=PaymentStatus.NEW.value,
            invoice_id=invoice.txn_id,
            invoice_url=invoice.invoice_url,
            metadata={
                **(metadata or {}),
                **({"email": email} if email else {}),
                "requested_amount": format(requested, "f"),
                "source": PAYMENT_SOURCE,
            },
        )

        try:
            stored = await PaymentRepository.insert(db, record)
        except StoreError as exc:
            log.critical("payment_not_recorded", order_id=order_id, txn_id=invoice.txn_id, error=exc.message)
            raise StoreError(
                f"Invoice {invoice.txn_id} was created at the gateway but the payment could not be recorded"
            ) from exc

        log.info("payment_created", order_id=order_id, user_id=user_id, txn_id=invoice.txn_id, amount=format(invoiced, "f"), currency=currency)
        return PaymentSummary(
            order_id=stored.order_id,
            invoice_id=stored.invoice_id,
            invoice_url=stored.invoice_url,
            amount=stored.amount,
            currency=stored.currency,
            status=stored.status,
        )

    # --- getPaymentStatus ---

    async def get_payment_status(self, db: AsyncSession, order_id: str) -> ServiceResult:
        try:
            record, fulfillment_error = await self._get_payment_status(db, order_id)
        except PaymentCoreError as exc:
            return ServiceResult.fail(exc)
        except Exception:
            return _internal_failure("get_payment_status")

        if fulfillment_error is not None:
            return ServiceResult.fail(fulfillment_error, data=record)
        return ServiceResult.ok(record)

    async def _resolve(self, db: AsyncSession, identifier: str) -> PaymentRecord:
        if not identifier or not str(identifier).strip():
            raise ValidationError("Order ID is required")
        record = await PaymentRepository.resolve(db, str(identifier))
        if record is None:
            raise NotFoundError("Payment not found")
        return record

    async def _get_payment_status(self, db, order_id) -> Tuple[PaymentRecord, Optional[FulfillmentError]]:
        record = await self._resolve(db, order_id)
        if not record.invoice_id:
            return record, None

        try:
            info = await self.gateway.query_status(record.invoice_id, record.order_id)
        except GatewayError as exc:
            # Serve the last known state rather than failing the caller
            log.warning("payment_status_stale", order_id=record.order_id, error=exc.message)
            return record, None

        return await self._reconcile(db, record, info.status, source="poll")

    # --- handlePaymentCallback ---

    async def handle_payment_callback(self, db: AsyncSession, payload: Dict[str, Any]) -> ServiceResult:
        try:
            record, fulfillment_error = await self._handle_payment_callback(db, payload)
        except NotFoundError as exc:
            payment_callbacks_total.labels(outcome="not_found").inc()
            return ServiceResult.fail(exc)
        except CallbackSignatureError as exc:
            payment_callbacks_total.labels(outcome="rejected").inc()
            return ServiceResult.fail(exc)
        except InvalidCallbackError as exc:
            payment_callbacks_total.labels(outcome="invalid").inc()
            return ServiceResult.fail(exc)
        except PaymentCoreError as exc:
            return ServiceResult.fail(exc)
        except Exception:
            return _internal_failure("handle_payment_callback")

        payment_callbacks_total.labels(outcome="applied").inc()
        if fulfillment_error is not None:
            return ServiceResult.fail(fulfillment_error, data=record)
        return ServiceResult.ok(record)

    async def _handle_payment_callback(self, db, payload) -> Tuple[PaymentRecord, Optional[FulfillmentError]]:
        if not isinstance(payload, dict):
            raise InvalidCallbackError("Invalid callback data")
        if self.verifier is not None and not self.verifier.verify(payload):
            raise CallbackSignatureError("Callback signature verification failed")

        try:
            callback = CallbackPayload.model_validate(payload)
        except PydanticValidationError as exc:
            raise InvalidCallbackError("Invalid callback data") from exc

        correlation_id = callback.correlation_id
        if not correlation_id:
            log.warning("payment_callback_without_order", fields=sorted(payload))
            raise InvalidCallbackError("Invalid callback data: missing order_number")

        record = await PaymentRepository.resolve(db, correlation_id)
        if record is None:
            log.warning("payment_callback_unknown_order", order_number=correlation_id)
            raise NotFoundError("Payment not found")

        received = {"status": callback.status, "txn_id": callback.txn_id}
        if callback.amount:
            # Detected amounts are recorded next to, never over, the invoiced amount
            received["amount"] = callback.amount
        log.info("payment_callback_received", order_id=record.order_id, status=callback.status)
        return await self._reconcile(db, record, callback.status, source="callback", received=received)

    # --- Manual fulfillment retry ---

    async def retry_fulfillment(self, db: AsyncSession, order_id: str) -> ServiceResult:
        try:
            record = await self._resolve(db, order_id)
            if record.voucher_details:
                return ServiceResult.ok(record)
            if not is_success(record.status):
                raise ValidationError(f"Payment {record.order_id} is not confirmed (status {record.status})")

            async with self._locks.hold(record.order_id):
                record = await PaymentRepository.get(db, record.id)
                if record.voucher_details:
                    return ServiceResult.ok(record)
                record, fulfillment_error = await self._run_fulfillment(db, record, report_claimed=True)
        except PaymentCoreError as exc:
            return ServiceResult.fail(exc)
        except Exception:
            return _internal_failure("retry_fulfillment")

        if fulfillment_error is not None:
            return ServiceResult.fail(fulfillment_error, data=record)
        return ServiceResult.ok(record)

    # --- Reconciliation ---

    async def _reconcile(
        self,
        db: AsyncSession,
        record: PaymentRecord,
        raw_status,
        source: str,
        received: Optional[Dict[str, Any]] = None,
    ) -> Tuple[PaymentRecord, Optional[FulfillmentError]]:
        new_status = normalize_status(raw_status)

        async with self._locks.hold(record.order_id):
            current = await PaymentRepository.get(db, record.id)
            if new_status == current.status:
                return current, None
            if not can_transition(current.status, new_status):
                log.warning(
                    "payment_status_transition_ignored",
                    order_id=current.order_id,
                    current=current.status,
                    reported=new_status,
                    source=source,
                )
                return current, None

            changes: Dict[str, Any] = {"status": new_status}
            if received:
                changes["metadata"] = {**current.metadata, "last_callback": received}
            updated = await PaymentRepository.update(db, current.id, **changes)
            payment_status_transitions_total.labels(status=new_status, source=source).inc()
            log.info(
                "payment_status_changed",
                order_id=updated.order_id,
                previous=current.status,
                status=new_status,
                source=source,
            )

            if is_success(new_status) and updated.voucher_details is None:
                return await self._run_fulfillment(db, updated)
            return updated, None

    async def _run_fulfillment(
        self,
        db: AsyncSession,
        record: PaymentRecord,
        report_claimed: bool = False,
    ) -> Tuple[PaymentRecord, Optional[FulfillmentError]]:
        if self.fulfillment is None:
            log.warning("fulfillment_not_configured", order_id=record.order_id)
            return record, None
        try:
            await self.fulfillment.fulfill(db, record)
        except FulfillmentClaimedError as exc:
            current = await PaymentRepository.get(db, record.id)
            # Another worker holds the claim; only an explicit retry reports it
            if report_claimed and not current.voucher_details:
                return current, exc
            return current, None
        except FulfillmentError as exc:
            # Payment stays confirmed; the caller notifies the user and an operator retries
            return await PaymentRepository.get(db, record.id), exc
        return await PaymentRepository.get(db, record.id), None
