from fastapi import FastAPI

# IMPORTANT: import models so they register with Base
from services.order_service import models as order_models  # noqa: F401
from services.payment_service import models as payment_models  # noqa: F401

from services.payment_service.main import payment_app, start_payment_service, stop_payment_service
from services.orchestrator.main import app as telegram_app, attach_bot, detach_bot

app = FastAPI(title="Gift Card Store")


@app.on_event("startup")
async def startup_event():
    # Mounted apps do not get their own startup events; one payment core serves both
    service = await start_payment_service(payment_app)
    attach_bot(telegram_app, service)


@app.on_event("shutdown")
async def shutdown_event():
    await detach_bot(telegram_app)
    service = getattr(payment_app.state, "payment_service", None)
    if service is not None:
        await stop_payment_service(service)


app.mount("/payments", payment_app)
app.mount("/telegram", telegram_app)
