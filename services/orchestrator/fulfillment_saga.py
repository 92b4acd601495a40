import structlog

from shared.errors import FulfillmentClaimedError, FulfillmentError, StoreError
from services.order_service.repository import OrderRepository
from services.payment_service.repository import (
    FULFILLMENT_DONE,
    PaymentRepository,
)
from services.payment_service.status import PaymentStatus
from .saga import SagaOrchestrator

log = structlog.get_logger(__name__)

# ctx keys: db, record, partner, builder (callable record -> OrderRequest)

# --- ACTIONS ---

async def claim_payment(ctx: dict):
    db, record = ctx["db"], ctx["record"]
    if not await PaymentRepository.claim_fulfillment(db, record.id):
        raise FulfillmentClaimedError(f"Fulfillment for {record.order_id} is already claimed or done")


async def place_partner_order(ctx: dict):
    db, record, partner = ctx["db"], ctx["record"], ctx["partner"]
    request = ctx["builder"](record)
    response = await partner.create_order(db, request)
    ctx["order"] = response

    try:
        await OrderRepository.save_order(db, response)
    except StoreError as exc:
        # The vouchers are still on the response; keep going so the user gets them
        log.error("partner_order_not_recorded", order_id=record.order_id, partner_order_id=response.id, error=str(exc))

    if not response.succeeded:
        reason = response.failure_reason or f"partner order status {response.status or 'unknown'}"
        raise FulfillmentError(f"Partner order for {record.order_id} did not deliver vouchers: {reason}")


async def record_vouchers(ctx: dict):
    db, record, order = ctx["db"], ctx["record"], ctx["order"]
    ctx["record"] = await PaymentRepository.update(
        db,
        record.id,
        voucher_details=order.vouchers,
        status=PaymentStatus.COMPLETED.value,
        fulfillment_state=FULFILLMENT_DONE,
    )
    ctx["vouchers"] = order.vouchers


# --- COMPENSATIONS (Rollbacks) ---

async def release_claim(ctx: dict):
    await PaymentRepository.release_fulfillment(ctx["db"], ctx["record"].id)


async def flag_unrecorded_order(ctx: dict):
    order = ctx.get("order")
    if order is not None and order.vouchers:
        # Partner orders cannot be reversed from here; operators reconcile by reference id
        log.critical(
            "partner_order_needs_reconciliation",
            order_id=ctx["record"].order_id,
            partner_order_id=order.id,
            vouchers=len(order.vouchers),
        )


# --- BUILDER FACTORY ---

def build_fulfillment_saga() -> SagaOrchestrator:
    saga = SagaOrchestrator("fulfillment")
    saga.add_step("claim_payment", claim_payment, release_claim)
    saga.add_step("place_partner_order", place_partner_order, flag_unrecorded_order)
    saga.add_step("record_vouchers", record_vouchers, None)
    return saga
