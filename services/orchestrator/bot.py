"""
Telegram front end for the payment core.

Updates are routed through a single dispatch table: commands by name,
inline-button callbacks by the prefix of their callback data. Each handler
returns the reply text; sending it is the webhook's job.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import LOCAL_CURRENCY, TELEGRAM_API_URL, TELEGRAM_BOT_TOKEN
from services.payment_service.schemas import PaymentRecord, ServiceResult
from services.payment_service.service import PaymentService

log = structlog.get_logger(__name__)

HELP_TEXT = (
    "Buy gift cards with crypto.\n"
    "Pick a card in the catalog to get a payment link, then tap "
    "\"Check status\" once you have paid.\n"
    "/status <orderId> shows the state of an order."
)

START_TEXT = "Welcome to the Gift Card Store! " + HELP_TEXT

# What a chat user sees for each failure code; provider text stays in the logs
USER_ERRORS = {
    "validation_error": "That request doesn't look right. Please pick a card again.",
    "not_found": "I couldn't find that order.",
    "gateway_error": "The payment provider is not responding. Please try again in a minute.",
    "gateway_config_error": "Payments are temporarily unavailable.",
    "store_error": "Something went wrong saving your order. Support has been notified.",
    "fulfillment_error": (
        "Your payment is confirmed but the gift card could not be issued yet. "
        "Support has been notified and will deliver it shortly."
    ),
}
GENERIC_ERROR = "Something went wrong. Please try again later."


@dataclass
class Incoming:
    chat_id: int
    user_id: str
    text: str = ""
    callback_data: str = ""
    callback_id: Optional[str] = None

    @classmethod
    def from_update(cls, update: Dict[str, Any]) -> Optional["Incoming"]:
        query = update.get("callback_query")
        if query:
            message = query.get("message") or {}
            chat = message.get("chat") or {}
            sender = query.get("from") or {}
            if "id" not in chat:
                return None
            return cls(
                chat_id=chat["id"],
                user_id=str(sender.get("id", chat["id"])),
                callback_data=query.get("data") or "",
                callback_id=query.get("id"),
            )

        message = update.get("message") or update.get("edited_message")
        if not message or "chat" not in message:
            return None
        sender = message.get("from") or {}
        return cls(
            chat_id=message["chat"]["id"],
            user_id=str(sender.get("id", message["chat"]["id"])),
            text=(message.get("text") or "").strip(),
        )


Handler = Callable[[AsyncSession, Incoming, str], Awaitable[str]]


def user_error(result: ServiceResult) -> str:
    return USER_ERRORS.get(result.error_code, GENERIC_ERROR)


def describe_payment(record: PaymentRecord) -> str:
    lines = [
        f"Order {record.order_id}",
        f"Status: {record.status}",
        f"Amount: {format(record.amount, 'f')} {record.currency}",
    ]
    for voucher in record.voucher_details or []:
        card = f"Card: {voucher.card_number}"
        if voucher.card_pin:
            card += f" | PIN: {voucher.card_pin}"
        if voucher.valid_till:
            card += f" | Valid till: {voucher.valid_till}"
        lines.append(card)
    return "\n".join(lines)


class BotDispatcher:
    def __init__(self, payments: PaymentService, local_currency: str = LOCAL_CURRENCY):
        self.payments = payments
        self.local_currency = local_currency
        self.commands: Dict[str, Handler] = {
            "/start": self.on_start,
            "/help": self.on_help,
            "/status": self.on_status,
        }
        self.callbacks: Dict[str, Handler] = {
            "pay:": self.on_pay,
            "status:": self.on_status,
        }

    async def dispatch(self, db: AsyncSession, incoming: Incoming) -> Optional[str]:
        if incoming.callback_data:
            for prefix, handler in self.callbacks.items():
                if incoming.callback_data.startswith(prefix):
                    return await handler(db, incoming, incoming.callback_data[len(prefix):])
            log.info("bot_callback_unhandled", data=incoming.callback_data)
            return None

        if incoming.text.startswith("/"):
            command, _, argument = incoming.text.partition(" ")
            # Commands may arrive as /status@BotName in groups
            handler = self.commands.get(command.split("@", 1)[0].lower())
            if handler is not None:
                return await handler(db, incoming, argument.strip())
        return None

    async def on_start(self, db, incoming, argument) -> str:
        return START_TEXT

    async def on_help(self, db, incoming, argument) -> str:
        return HELP_TEXT

    async def on_pay(self, db, incoming, argument) -> str:
        """``pay:<brandId>:<amount in local currency>``"""
        brand_id, _, local_amount = argument.partition(":")
        try:
            fiat = Decimal(local_amount)
        except ArithmeticError:
            fiat = None
        if not brand_id or fiat is None or not fiat.is_finite() or fiat <= 0:
            return USER_ERRORS["validation_error"]

        settlement = self.payments.settlement_currency
        amount = self.payments.converter.convert(fiat, self.local_currency, settlement)
        result = await self.payments.create_payment(
            db,
            user_id=incoming.user_id,
            amount=amount,
            local_amount=fiat,
            currency=settlement,
            metadata={"brand_id": brand_id, "denomination": format(fiat, "f")},
        )
        if not result.success:
            log.warning("bot_payment_failed", user_id=incoming.user_id, code=result.error_code, error=result.error)
            return user_error(result)

        summary = result.data
        return (
            f"Pay {format(summary.amount, 'f')} {summary.currency} for your "
            f"{format(fiat, 'f')} {self.local_currency} gift card:\n"
            f"{summary.invoice_url}\n"
            f"Order: {summary.order_id}"
        )

    async def on_status(self, db, incoming, argument) -> str:
        if not argument:
            return "Usage: /status <orderId>"
        result = await self.payments.get_payment_status(db, argument)
        if not result.success:
            log.warning("bot_status_failed", order_id=argument, code=result.error_code, error=result.error)
            if result.data is not None:
                return describe_payment(result.data) + "\n\n" + user_error(result)
            return user_error(result)
        return describe_payment(result.data)


class TelegramClient:
    def __init__(self, token: str = TELEGRAM_BOT_TOKEN, api_url: str = TELEGRAM_API_URL, http_client: Optional[httpx.AsyncClient] = None):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, payload: Dict[str, Any]) -> bool:
        if not self.token:
            log.warning("telegram_token_missing", method=method)
            return False
        try:
            resp = await self._get_client().post(f"{self.api_url}/bot{self.token}/{method}", json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            log.error("telegram_request_failed", method=method, error=str(exc))
            return False
        return True

    async def send_message(self, chat_id: int, text: str) -> bool:
        return await self._call("sendMessage", {"chat_id": chat_id, "text": text, "disable_web_page_preview": True})

    async def answer_callback_query(self, callback_id: str) -> bool:
        return await self._call("answerCallbackQuery", {"callback_query_id": callback_id})
