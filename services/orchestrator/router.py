from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from shared.config.database import get_db
from shared.security import limiter
from .bot import BotDispatcher, Incoming, TelegramClient

log = structlog.get_logger(__name__)

router = APIRouter()


def get_dispatcher(request: Request) -> BotDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Bot is not ready")
    return dispatcher


def get_telegram(request: Request) -> TelegramClient:
    telegram = getattr(request.app.state, "telegram", None)
    if telegram is None:
        raise HTTPException(status_code=503, detail="Bot is not ready")
    return telegram


@router.get("/health")
async def health_check():
    return {"service": "telegram", "status": "running"}


@router.post("/webhook")
@limiter.limit("30/minute")
async def telegram_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    dispatcher: BotDispatcher = Depends(get_dispatcher),
    telegram: TelegramClient = Depends(get_telegram),
):
    try:
        update = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid update")

    incoming = Incoming.from_update(update) if isinstance(update, dict) else None
    if incoming is None:
        # Always 200 so Telegram does not redeliver updates we ignore
        return {"ok": True}

    if incoming.callback_id:
        await telegram.answer_callback_query(incoming.callback_id)

    reply = await dispatcher.dispatch(db, incoming)
    if reply:
        await telegram.send_message(incoming.chat_id, reply)
    return {"ok": True}
