"""
Voucher fulfillment for confirmed payments.

Runs the fulfillment saga: claim the payment, place the partner order,
record the vouchers. A failed fulfillment never touches the payment
status; it only releases the claim so an operator can retry.
"""
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import LOCAL_CURRENCY, PARTNER_DEFAULT_PHONE
from shared.errors import FulfillmentClaimedError, FulfillmentError, PaymentCoreError
from shared.observability import fulfillments_total
from services.order_service.client import PartnerClient
from services.order_service.schemas import ContactDetails, DenominationDetail, OrderRequest, Voucher
from services.payment_service.currency import CurrencyConverter, converter as default_converter, quantize_amount
from services.payment_service.schemas import PaymentRecord
from .fulfillment_saga import build_fulfillment_saga

log = structlog.get_logger(__name__)

PRODUCT_KEYS = ("brand_id", "brandId", "product_id", "productId")


class FulfillmentService:
    def __init__(
        self,
        partner: PartnerClient,
        converter: Optional[CurrencyConverter] = None,
        local_currency: str = LOCAL_CURRENCY,
        default_phone: str = PARTNER_DEFAULT_PHONE,
    ):
        self.partner = partner
        self.converter = converter or default_converter
        self.local_currency = local_currency
        self.default_phone = default_phone

    def fiat_amount(self, record: PaymentRecord):
        if record.local_amount > 0:
            return quantize_amount(record.local_amount, record.local_currency or self.local_currency)
        return self.converter.convert(record.amount, record.currency, self.local_currency)

    def build_order_request(self, record: PaymentRecord) -> OrderRequest:
        meta = record.metadata or {}
        product_id = next((str(meta[k]) for k in PRODUCT_KEYS if meta.get(k)), None)
        if not product_id:
            raise FulfillmentError(f"Payment {record.order_id} carries no brand/product reference")

        amount = float(self.fiat_amount(record))
        denomination = float(meta.get("denomination") or amount)
        quantity = int(meta.get("quantity") or 1)

        # The paying principal is a chat user; partner contact details are synthesized from it
        name = meta.get("customer_name") or f"Telegram User {record.user_id}"
        phone = meta.get("phone") or self.default_phone
        email = meta.get("email") or f"user-{record.user_id}@giftcardstore.com"

        return OrderRequest(
            product_id=product_id,
            reference_id=record.order_id,
            amount=amount,
            denomination_details=[DenominationDetail(denomination=denomination, quantity=quantity)],
            customer_details=ContactDetails(name=name, phone_number=phone, email=email),
            recipient_details=ContactDetails(name=name, phone_number=phone),
        )

    async def fulfill(self, db: AsyncSession, record: PaymentRecord) -> List[Voucher]:
        """Mint vouchers for a confirmed payment.

        Raises ``FulfillmentClaimedError`` when another caller owns the
        payment, ``FulfillmentError`` for everything else.
        """
        ctx = {
            "db": db,
            "record": record,
            "partner": self.partner,
            "builder": self.build_order_request,
        }
        log.info("fulfillment_started", order_id=record.order_id)
        try:
            await build_fulfillment_saga().execute(ctx)
        except FulfillmentClaimedError:
            fulfillments_total.labels(outcome="skipped").inc()
            log.info("fulfillment_skipped", order_id=record.order_id)
            raise
        except FulfillmentError as exc:
            fulfillments_total.labels(outcome="failed").inc()
            log.error("fulfillment_failed", order_id=record.order_id, error=exc.message)
            raise
        except PaymentCoreError as exc:
            fulfillments_total.labels(outcome="failed").inc()
            log.error("fulfillment_failed", order_id=record.order_id, error=exc.message, code=exc.code)
            raise FulfillmentError(f"Fulfillment for {record.order_id} failed: {exc.message}") from exc
        except Exception as exc:
            fulfillments_total.labels(outcome="failed").inc()
            log.exception("fulfillment_crashed", order_id=record.order_id)
            raise FulfillmentError(f"Fulfillment for {record.order_id} failed: {exc}") from exc

        fulfillments_total.labels(outcome="fulfilled").inc()
        log.info("fulfillment_completed", order_id=record.order_id, vouchers=len(ctx["vouchers"]))
        return ctx["vouchers"]
