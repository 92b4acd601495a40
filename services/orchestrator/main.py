from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from shared.security import limiter
from shared.observability import setup_observability
from services.payment_service.main import start_payment_service, stop_payment_service
from .bot import BotDispatcher, TelegramClient
from .router import router

app = FastAPI(
    title="Telegram Bot Service",
    version="1.0.0"
)

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(app, "telegram_bot")

# --- SECURITY SETUP ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(router)


def attach_bot(bot_app: FastAPI, payments) -> None:
    bot_app.state.dispatcher = BotDispatcher(payments)
    bot_app.state.telegram = TelegramClient()


async def detach_bot(bot_app: FastAPI) -> None:
    telegram = getattr(bot_app.state, "telegram", None)
    if telegram is not None:
        await telegram.aclose()


# Only fires when this app runs on its own; the cluster entrypoint wires mounted apps itself
@app.on_event("startup")
async def startup_event():
    app.state.payment_service = await start_payment_service()
    attach_bot(app, app.state.payment_service)


@app.on_event("shutdown")
async def shutdown_event():
    await detach_bot(app)
    service = getattr(app.state, "payment_service", None)
    if service is not None:
        await stop_payment_service(service)
