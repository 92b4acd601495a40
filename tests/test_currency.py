from decimal import Decimal

import httpx
import pytest

from shared.errors import ValidationError
from services.payment_service.currency import (
    CurrencyConverter,
    format_amount,
    quantize_amount,
    to_decimal,
)


class TestConvert:

    def test_same_currency_is_identity(self, converter):
        assert converter.convert(100, "INR", "INR") == 100

    def test_zero_stays_zero(self, converter):
        assert converter.convert(0, "USD", "INR") == 0

    def test_usd_to_inr_uses_seed_rate(self, converter):
        assert converter.convert(Decimal("2"), "USD", "INR") == Decimal("167.00")

    def test_inr_to_usdt_keeps_crypto_precision(self, converter):
        assert converter.convert(Decimal("500"), "INR", "USDT") == Decimal("5.98802395")

    def test_monotonic_in_amount(self, converter):
        amounts = [Decimal(x) for x in ("0", "1", "9.99", "10", "250", "10000")]
        converted = [converter.convert(a, "INR", "USD") for a in amounts]
        assert converted == sorted(converted)

    def test_currency_codes_are_case_insensitive(self, converter):
        assert converter.convert(Decimal("1"), "usd", "inr") == Decimal("83.50")

    def test_unknown_pair_returns_amount_unchanged(self, converter):
        assert converter.convert(Decimal("12.5"), "JPY", "GBP") == Decimal("12.5")

    def test_missing_rate_falls_back_to_constant(self):
        converter = CurrencyConverter(rates={"INR": Decimal("1")})
        assert converter.convert(Decimal("167"), "INR", "USD") == Decimal("2.00")

    def test_unparseable_amount_never_raises(self, converter):
        assert converter.convert("abc", "USD", "INR") == "abc"


class TestDecimalHelpers:

    def test_fiat_rounds_half_up_to_two_places(self):
        assert quantize_amount("10.005", "INR") == Decimal("10.01")

    def test_crypto_keeps_eight_places(self):
        assert format_amount("0.123456789", "USDT") == "0.12345679"

    def test_format_never_uses_exponent(self):
        assert format_amount(0, "ETH") == "0.00000000"

    def test_float_input_uses_shortest_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_store_read_store_is_stable(self):
        stored = format_amount(Decimal("1.5"), "USDT")
        assert format_amount(to_decimal(stored), "USDT") == stored

    def test_invalid_amount_raises_validation_error(self):
        with pytest.raises(ValidationError):
            to_decimal("ten")


class TestRefreshRates:

    async def test_live_table_updates_rates(self):
        def handler(request):
            return httpx.Response(200, json={"base": "USD", "rates": {"USD": 1, "INR": 84, "EUR": 0.8}})

        converter = CurrencyConverter(rates_url="https://rates.test/latest")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await converter.refresh_rates(client) is True

        assert converter.rates["USD"] == Decimal("84")
        assert converter.rates["EUR"] == Decimal("105")
        assert converter.rates["INR"] == Decimal("1")
        # Pairs the table does not mention keep their seed rate
        assert converter.rates["USDT"] == Decimal("83.5")

    async def test_failure_keeps_cached_rates(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        converter = CurrencyConverter(rates_url="https://rates.test/latest")
        before = converter.rates
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await converter.refresh_rates(client) is False
        assert converter.rates == before

    async def test_without_url_is_a_no_op(self):
        assert await CurrencyConverter(rates_url="").refresh_rates() is False
