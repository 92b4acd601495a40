from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import StoreError
from .models import PartnerOrder, PartnerToken, PartnerVoucher
from .schemas import OrderResponse


class OrderRepository:
    @staticmethod
    async def save_order(db: AsyncSession, response: OrderResponse) -> PartnerOrder:
        """Keep the partner's full response plus one row per voucher."""
        order = PartnerOrder(
            partner_order_id=response.id,
            reference_id=response.reference_id,
            status=response.status,
            raw_response=response.model_dump(by_alias=True, mode="json"),
        )
        try:
            db.add(order)
            await db.flush()
            for voucher in response.vouchers:
                db.add(PartnerVoucher(
                    partner_voucher_id=voucher.id,
                    order_id=order.id,
                    card_type=voucher.card_type,
                    card_pin=voucher.card_pin,
                    card_number=voucher.card_number,
                    valid_till=voucher.valid_till,
                    amount=voucher.amount,
                    raw_response=voucher.model_dump(by_alias=True, mode="json"),
                ))
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StoreError(f"Failed to record partner order {response.id}") from exc
        await db.refresh(order)
        return order


class TokenRepository:
    @staticmethod
    async def get_token(db: AsyncSession) -> Optional[str]:
        result = await db.execute(select(PartnerToken).order_by(PartnerToken.id).limit(1))
        row = result.scalars().first()
        return row.token if row else None

    @staticmethod
    async def save_or_update(db: AsyncSession, token: str) -> None:
        result = await db.execute(select(PartnerToken).order_by(PartnerToken.id).limit(1))
        row = result.scalars().first()
        if row is None:
            db.add(PartnerToken(token=token))
        else:
            row.token = token
        await db.commit()
