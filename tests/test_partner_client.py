import json

import httpx
import pytest

from services.order_service.client import PartnerAPIError, PartnerClient
from services.order_service.repository import TokenRepository
from services.order_service.schemas import ContactDetails, DenominationDetail, OrderRequest

ORDER = {
    "id": "po-1",
    "referenceId": "order_1",
    "status": "SUCCESS",
    "vouchers": [{"id": "v1", "cardType": "PIN_SECURED", "cardPin": "1234", "validTill": "2027-12-31", "amount": 500}],
}


@pytest.fixture
def order_request():
    contact = ContactDetails(name="Telegram User 42", phone_number="9999999999")
    return OrderRequest(
        product_id="AMAZON",
        reference_id="order_1",
        amount=500.0,
        denomination_details=[DenominationDetail(denomination=500.0)],
        customer_details=contact,
        recipient_details=contact,
    )


class PartnerAPI:
    """Scripted partner endpoints; ``orders`` holds the responses for successive order posts."""

    def __init__(self, orders):
        self.orders = list(orders)
        self.logins = 0
        self.seen = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.seen.append(request)
        path = request.url.path
        if path == "/v1/partners/auth/login":
            self.logins += 1
            assert json.loads(request.content) == {"clientId": "cid", "clientSecret": "secret"}
            return httpx.Response(200, json={"accessToken": f"token-{self.logins}"})
        if path == "/v1/partners/orders":
            return self.orders.pop(0)
        if path == "/v1/partners/orders/by-reference/order_1":
            return httpx.Response(200, json=ORDER)
        return httpx.Response(404)


def make_client(api: PartnerAPI) -> PartnerClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return PartnerClient(base_url="https://partner.test", client_id="cid", client_secret="secret", http_client=http)


async def test_logs_in_once_and_stores_the_token(db, order_request):
    api = PartnerAPI([httpx.Response(200, json=ORDER)])

    order = await make_client(api).create_order(db, order_request)

    assert order.succeeded
    assert order.vouchers[0].card_pin == "1234"
    assert order.vouchers[0].amount == "500"
    assert api.logins == 1
    assert await TokenRepository.get_token(db) == "token-1"

    posted = api.seen[-1]
    assert posted.headers["Authorization"] == "Bearer token-1"
    assert json.loads(posted.content)["referenceId"] == "order_1"


async def test_expired_token_is_refreshed_and_request_replayed(db, order_request):
    await TokenRepository.save_or_update(db, "stale")
    api = PartnerAPI([httpx.Response(401), httpx.Response(200, json=ORDER)])

    order = await make_client(api).create_order(db, order_request)

    assert order.id == "po-1"
    assert api.logins == 1
    assert await TokenRepository.get_token(db) == "token-1"


async def test_duplicate_reference_reads_existing_order(db, order_request):
    await TokenRepository.save_or_update(db, "valid")
    api = PartnerAPI([httpx.Response(409, json={"message": "duplicate referenceId"})])

    order = await make_client(api).create_order(db, order_request)

    assert order.reference_id == "order_1"
    assert api.seen[-1].url.path.endswith("/by-reference/order_1")


async def test_rejected_order_raises(db, order_request):
    await TokenRepository.save_or_update(db, "valid")
    api = PartnerAPI([httpx.Response(422, json={"message": "invalid product"})])

    with pytest.raises(PartnerAPIError) as exc_info:
        await make_client(api).create_order(db, order_request)
    assert exc_info.value.status_code == 422


async def test_missing_credentials_fail_fast(db, order_request):
    client = PartnerClient(base_url="https://partner.test", client_id="", client_secret="")
    with pytest.raises(PartnerAPIError, match="credentials"):
        await client.create_order(db, order_request)
