"""
Payment endpoints for the bot and operators (X-Internal-API-Key) and the
gateway's public status callback.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security import limiter
from shared.security.dependencies import verify_internal_api_key

from .schemas import PaymentCreate, ServiceResult
from .service import PaymentService

ERROR_STATUS = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "invalid_callback": status.HTTP_400_BAD_REQUEST,
    "invalid_signature": status.HTTP_401_UNAUTHORIZED,
    "not_found": status.HTTP_404_NOT_FOUND,
    "gateway_error": status.HTTP_502_BAD_GATEWAY,
    "gateway_config_error": status.HTTP_503_SERVICE_UNAVAILABLE,
    "fulfillment_error": status.HTTP_502_BAD_GATEWAY,
    "fulfillment_claimed": status.HTTP_409_CONFLICT,
}

router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()


def get_payment_service(request: Request) -> PaymentService:
    service = getattr(request.app.state, "payment_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment gateway is not configured")
    return service


def to_response(result: ServiceResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    code = success_status if result.success else ERROR_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=code, content=result.model_dump(mode="json", by_alias=True))


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "payment", "status": "running"}


@router.post("/")
@limiter.limit("20/minute")
async def create_payment(
    request: Request,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.create_payment(
        db,
        user_id=payload.user_id,
        amount=payload.amount,
        local_amount=payload.local_amount,
        currency=payload.currency,
        email=payload.email,
        metadata=payload.metadata,
    )
    return to_response(result, status.HTTP_201_CREATED)


@router.get("/status/{order_id}")
@limiter.limit("60/minute")
async def payment_status(
    request: Request,
    order_id: str,
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    return to_response(await service.get_payment_status(db, order_id))


@router.post("/{order_id}/fulfillment/retry")
async def retry_fulfillment(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    return to_response(await service.retry_fulfillment(db, order_id))


@public_router.post("/callback")
async def payment_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    # Plisio posts JSON when the callback url carries ?json=true, form data otherwise
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            payload = None
    else:
        payload = dict(await request.form())
    return to_response(await service.handle_payment_callback(db, payload))
