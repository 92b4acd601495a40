"""
Shared fixtures: a throwaway SQLite database per test plus in-memory fakes
for the payment gateway and the gift card partner.
"""
import asyncio
import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ.setdefault("ENVIRONMENT", "test")

from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from shared.config.database import Base
from shared.errors import GatewayError
from shared.security import CallbackSignatureVerifier
from services.order_service import models as order_models  # noqa: F401
from services.order_service.schemas import OrderRequest, OrderResponse, Voucher
from services.orchestrator.fulfillment import FulfillmentService
from services.payment_service import models as payment_models  # noqa: F401
from services.payment_service.currency import CurrencyConverter
from services.payment_service.schemas import InvoiceData, StatusInfo
from services.payment_service.service import PaymentService

CALLBACK_SECRET = "test-callback-secret"


class FakeGateway:
    def __init__(self, status: str = "new", invoice_total_sum: Optional[str] = None):
        self.status = status
        self.invoice_total_sum = invoice_total_sum
        self.fail_with: Optional[GatewayError] = None
        self.invoices: List[dict] = []
        self._next = 0

    async def create_invoice(self, order_number, amount, extra=None) -> InvoiceData:
        if self.fail_with is not None:
            raise self.fail_with
        self._next += 1
        txn_id = f"t{self._next}"
        self.invoices.append({"order_number": order_number, "amount": amount, "extra": extra or {}})
        return InvoiceData.model_validate({
            "txn_id": txn_id,
            "invoice_url": f"https://pay/{txn_id}",
            "invoice_total_sum": self.invoice_total_sum,
        })

    async def query_status(self, invoice_id, order_number=None) -> StatusInfo:
        if self.fail_with is not None:
            raise self.fail_with
        return StatusInfo(txn_id=invoice_id, status=self.status, order_number=order_number)

    async def aclose(self):
        pass


class FakePartner:
    def __init__(self, status: str = "SUCCESS"):
        self.status = status
        self.requests: List[OrderRequest] = []
        # Set to stall create_order until the event fires
        self.hold: Optional[asyncio.Event] = None

    async def create_order(self, db, request: OrderRequest) -> OrderResponse:
        self.requests.append(request)
        if self.hold is not None:
            await self.hold.wait()
        # Give an overlapping caller the chance to interleave
        await asyncio.sleep(0.01)
        vouchers = []
        if self.status == "SUCCESS":
            vouchers = [Voucher(id="v1", card_type="CARD_NO_AND_PIN", card_number="4111-0001", card_pin="1234",
                                valid_till="2027-12-31", amount=str(request.amount))]
        return OrderResponse(
            id=f"po-{len(self.requests)}",
            reference_id=request.reference_id,
            status=self.status,
            vouchers=vouchers,
            failure_reason=None if vouchers else "OUT_OF_STOCK",
        )

    async def aclose(self):
        pass


@pytest_asyncio.fixture
async def engine(tmp_path):
    # One statement per transaction so concurrent sessions never hold SQLite read locks
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}", isolation_level="AUTOCOMMIT")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def partner():
    return FakePartner()


@pytest.fixture
def converter():
    return CurrencyConverter()


@pytest.fixture
def verifier():
    return CallbackSignatureVerifier(CALLBACK_SECRET, require_signature=False)


@pytest.fixture
def payment_service(gateway, partner, converter, verifier):
    fulfillment = FulfillmentService(partner, converter=converter)
    return PaymentService(gateway, fulfillment=fulfillment, verifier=verifier, converter=converter, app_url="https://shop.test")


@pytest.fixture
def gift_card_metadata():
    return {"brand_id": "AMAZON", "denomination": "500"}
