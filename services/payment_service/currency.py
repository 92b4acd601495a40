"""
Currency conversion between the user-facing fiat currency and the
settlement currency of the crypto gateway.

Rates are kept as "INR per one unit" and every conversion pivots through
INR. Conversions never raise: on a missing or broken rate they fall back to
the hardcoded USD/INR constant (or return the amount unchanged) and log it.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Optional

import httpx
import structlog

from shared.config.settings import RATES_URL
from shared.errors import ValidationError

log = structlog.get_logger(__name__)

PIVOT_CURRENCY = "INR"
FIAT_CURRENCIES = frozenset({"INR", "USD", "EUR"})
FIAT_PLACES = 2
CRYPTO_PLACES = 8

USD_INR_FALLBACK_RATE = Decimal("83.5")
ETH_USD_RATE = Decimal("3500")

SEED_RATES: Dict[str, Decimal] = {
    "INR": Decimal("1"),
    "USD": USD_INR_FALLBACK_RATE,
    "USDT": USD_INR_FALLBACK_RATE,
    "ETH": ETH_USD_RATE * USD_INR_FALLBACK_RATE,
}


def decimal_places(currency: str) -> int:
    return FIAT_PLACES if (currency or "").upper() in FIAT_CURRENCIES else CRYPTO_PLACES


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their shortest repr instead of binary noise
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid monetary amount: {value!r}") from exc


def quantize_amount(amount, currency: str) -> Decimal:
    step = Decimal(1).scaleb(-decimal_places(currency))
    return to_decimal(amount).quantize(step, rounding=ROUND_HALF_UP)


def format_amount(amount, currency: str) -> str:
    """Decimal text as stored in the payments table."""
    return format(quantize_amount(amount, currency), "f")


class CurrencyConverter:
    def __init__(self, rates: Optional[Dict[str, Decimal]] = None, rates_url: str = RATES_URL):
        self._rates: Dict[str, Decimal] = dict(rates or SEED_RATES)
        self.rates_url = rates_url

    @property
    def rates(self) -> Dict[str, Decimal]:
        return dict(self._rates)

    def convert(self, amount, from_currency: str, to_currency: str):
        if from_currency == to_currency:
            return amount

        src = (from_currency or "").upper()
        dst = (to_currency or "").upper()
        try:
            value = to_decimal(amount)
            if src == dst:
                return value
            if src in self._rates and dst in self._rates:
                pivot = value if src == PIVOT_CURRENCY else value * self._rates[src]
                result = pivot if dst == PIVOT_CURRENCY else pivot / self._rates[dst]
                return quantize_amount(result, dst)
        except (ValidationError, InvalidOperation, ZeroDivisionError, ArithmeticError) as exc:
            log.warning("currency_conversion_failed", source=src, target=dst, error=str(exc))

        return self._fallback(amount, src, dst)

    def _fallback(self, amount, src: str, dst: str):
        try:
            value = to_decimal(amount)
        except ValidationError:
            log.error("currency_fallback_unparseable_amount", amount=repr(amount))
            return amount

        if src == "INR" and dst == "USD":
            log.warning("currency_fallback_rate_used", source=src, target=dst, rate=str(USD_INR_FALLBACK_RATE))
            return quantize_amount(value / USD_INR_FALLBACK_RATE, dst)
        if src == "USD" and dst == "INR":
            log.warning("currency_fallback_rate_used", source=src, target=dst, rate=str(USD_INR_FALLBACK_RATE))
            return quantize_amount(value * USD_INR_FALLBACK_RATE, dst)

        log.warning("currency_pair_unsupported", source=src, target=dst)
        return value

    async def refresh_rates(self, client: Optional[httpx.AsyncClient] = None) -> bool:
        """Pull a live table shaped like ``{"base": "USD", "rates": {...}}``.

        Any failure keeps the current cache.
        """
        if not self.rates_url:
            return False
        try:
            if client is None:
                async with httpx.AsyncClient(timeout=10.0) as own_client:
                    resp = await own_client.get(self.rates_url)
            else:
                resp = await client.get(self.rates_url)
            resp.raise_for_status()
            body = resp.json()
            table = body.get("rates") or body.get("conversion_rates") or {}
            per_base_inr = to_decimal(table[PIVOT_CURRENCY])

            updated = {}
            for code, units_per_base in table.items():
                units = to_decimal(units_per_base)
                if units > 0:
                    updated[code.upper()] = per_base_inr / units
        except (httpx.HTTPError, ValueError, KeyError, AttributeError, ValidationError, ArithmeticError) as exc:
            log.warning("currency_rates_refresh_failed", error=str(exc))
            return False

        updated[PIVOT_CURRENCY] = Decimal("1")
        self._rates.update(updated)
        log.info("currency_rates_refreshed", currencies=len(updated))
        return True


converter = CurrencyConverter()
