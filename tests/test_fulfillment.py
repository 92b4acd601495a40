import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from shared.errors import FulfillmentClaimedError, FulfillmentError
from services.order_service.models import PartnerOrder, PartnerVoucher
from services.orchestrator.fulfillment import FulfillmentService
from services.orchestrator.saga import SagaOrchestrator
from services.payment_service.repository import PaymentRepository
from services.payment_service.schemas import PaymentRecord


@pytest.fixture
def fulfillment(partner, converter):
    return FulfillmentService(partner, converter=converter, default_phone="9000000000")


@pytest.fixture
def confirmed_payment(gift_card_metadata):
    return PaymentRecord(
        id=str(uuid.uuid4()),
        order_id="order_paid",
        user_id="42",
        amount=Decimal("5.98802395"),
        local_amount=Decimal("500.00"),
        currency="USDT",
        local_currency="INR",
        status="completed",
        invoice_id="t1",
        invoice_url="https://pay/t1",
        metadata=gift_card_metadata,
    )


class TestBuildOrderRequest:

    def test_contact_details_are_synthesized_from_the_chat_user(self, fulfillment, confirmed_payment):
        request = fulfillment.build_order_request(confirmed_payment)

        assert request.product_id == "AMAZON"
        assert request.reference_id == "order_paid"
        assert request.amount == 500.0
        assert request.denomination_details[0].denomination == 500.0
        assert request.denomination_details[0].quantity == 1
        assert request.customer_details.name == "Telegram User 42"
        assert request.customer_details.email == "user-42@giftcardstore.com"
        assert request.recipient_details.phone_number == "9000000000"

    def test_payload_is_camel_case(self, fulfillment, confirmed_payment):
        payload = fulfillment.build_order_request(confirmed_payment).model_dump(by_alias=True)
        assert set(payload) == {
            "productId", "referenceId", "amount", "denominationDetails", "customerDetails", "recipientDetails",
        }

    def test_missing_local_amount_is_converted(self, fulfillment, confirmed_payment):
        record = confirmed_payment.model_copy(update={"local_amount": Decimal("0"), "amount": Decimal("2")})
        assert fulfillment.build_order_request(record).amount == 167.0

    def test_missing_product_is_a_fulfillment_error(self, fulfillment, confirmed_payment):
        record = confirmed_payment.model_copy(update={"metadata": {}})
        with pytest.raises(FulfillmentError, match="brand"):
            fulfillment.build_order_request(record)


class TestFulfill:

    async def test_records_vouchers_and_partner_order(self, fulfillment, confirmed_payment, db):
        record = await PaymentRepository.insert(db, confirmed_payment)

        vouchers = await fulfillment.fulfill(db, record)

        assert [v.card_number for v in vouchers] == ["4111-0001"]
        stored = await PaymentRepository.get(db, record.id)
        assert stored.fulfillment_state == "fulfilled"
        assert stored.voucher_details[0].card_pin == "1234"

        order = (await db.execute(select(PartnerOrder))).scalars().one()
        assert order.reference_id == "order_paid"
        assert order.status == "SUCCESS"
        assert len((await db.execute(select(PartnerVoucher))).scalars().all()) == 1

    async def test_second_fulfill_is_refused(self, fulfillment, confirmed_payment, partner, db):
        record = await PaymentRepository.insert(db, confirmed_payment)
        await fulfillment.fulfill(db, record)

        with pytest.raises(FulfillmentClaimedError):
            await fulfillment.fulfill(db, record)
        assert len(partner.requests) == 1

    async def test_partner_failure_releases_the_claim(self, fulfillment, confirmed_payment, partner, db):
        partner.status = "FAILED"
        record = await PaymentRepository.insert(db, confirmed_payment)

        with pytest.raises(FulfillmentError, match="OUT_OF_STOCK"):
            await fulfillment.fulfill(db, record)

        stored = await PaymentRepository.get(db, record.id)
        assert stored.fulfillment_state == "failed"
        assert stored.voucher_details is None
        assert stored.status == "completed"

    async def test_unexpected_partner_crash_is_wrapped(self, confirmed_payment, converter, db):
        partner = AsyncMock()
        partner.create_order.side_effect = RuntimeError("socket closed")
        record = await PaymentRepository.insert(db, confirmed_payment)

        with pytest.raises(FulfillmentError, match="socket closed"):
            await FulfillmentService(partner, converter=converter).fulfill(db, record)
        assert (await PaymentRepository.get(db, record.id)).fulfillment_state == "failed"


class TestSagaOrchestrator:

    async def test_compensations_run_in_reverse(self):
        calls = []

        async def step(name):
            calls.append(name)

        saga = SagaOrchestrator("test")
        saga.add_step("a", lambda ctx: step("a"), lambda ctx: step("undo a"))
        saga.add_step("b", lambda ctx: step("b"), lambda ctx: step("undo b"))
        saga.add_step("c", AsyncMock(side_effect=ValueError("boom")), lambda ctx: step("undo c"))

        with pytest.raises(ValueError):
            await saga.execute({})
        assert calls == ["a", "b", "undo b", "undo a"]

    async def test_failing_compensation_does_not_block_others(self):
        undo_a = AsyncMock()
        saga = SagaOrchestrator("test")
        saga.add_step("a", AsyncMock(), undo_a)
        saga.add_step("b", AsyncMock(), AsyncMock(side_effect=RuntimeError("undo failed")))
        saga.add_step("c", AsyncMock(side_effect=ValueError("boom")))

        with pytest.raises(ValueError):
            await saga.execute({})
        undo_a.assert_awaited_once()
