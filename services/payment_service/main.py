from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import structlog

from shared.config.database import init_models
from shared.config.settings import IS_PRODUCTION, PLISIO_CALLBACK_SECRET
from shared.observability import setup_observability
from shared.security import CallbackSignatureVerifier, limiter
from services.order_service.client import PartnerClient
from services.orchestrator.fulfillment import FulfillmentService

from . import models  # noqa: F401  registers payments with Base
from .currency import converter
from .gateway import GatewayClient
from .router import public_router, router
from .service import PaymentService

log = structlog.get_logger(__name__)


def build_payment_service() -> PaymentService:
    """Wire the lifecycle manager from settings. Raises GatewayConfigError without an API key."""
    gateway = GatewayClient()
    fulfillment = FulfillmentService(PartnerClient(), converter=converter)
    verifier = CallbackSignatureVerifier(PLISIO_CALLBACK_SECRET, require_signature=IS_PRODUCTION)
    return PaymentService(gateway, fulfillment=fulfillment, verifier=verifier, converter=converter)


async def start_payment_service(*apps: FastAPI) -> PaymentService:
    await init_models()
    service = build_payment_service()
    if not await converter.refresh_rates():
        log.warning("exchange_rates_seeded", rates=sorted(converter.rates))
    for app in apps:
        app.state.payment_service = service
    return service


async def stop_payment_service(service: PaymentService):
    await service.gateway.aclose()
    if service.fulfillment is not None:
        await service.fulfillment.partner.aclose()


payment_app = FastAPI(title="Payment Service", version="2.0.0")

setup_observability(payment_app, "payment_service")

payment_app.state.limiter = limiter
payment_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

payment_app.include_router(router)
payment_app.include_router(public_router)


@payment_app.on_event("startup")
async def startup_event():
    await start_payment_service(payment_app)


@payment_app.on_event("shutdown")
async def shutdown_event():
    service = getattr(payment_app.state, "payment_service", None)
    if service is not None:
        await stop_payment_service(service)
