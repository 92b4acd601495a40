"""
Persistence boundary for payment records.

Every write is one UPDATE/INSERT statement committed on its own. Concurrent
updates of the same row are last-write-wins; the only conditional write is
the fulfillment claim, which is what keeps voucher minting single-shot.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import and_, or_, select, update, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import FULFILLMENT_CLAIM_TIMEOUT_SECONDS
from shared.errors import NotFoundError, StoreError

from .currency import format_amount
from .models import Payment
from .schemas import PaymentRecord

log = structlog.get_logger(__name__)

payments = Payment.__table__

# Identifiers may arrive tagged with the gateway's name (bot callback data,
# provider dashboards); the stored keys never carry it.
GATEWAY_ID_PREFIXES = ("plisio:", "plisio_")

FULFILLMENT_IN_PROGRESS = "in_progress"
FULFILLMENT_DONE = "fulfilled"
FULFILLMENT_FAILED = "failed"


def strip_gateway_prefix(identifier: str) -> str:
    value = (identifier or "").strip()
    for prefix in GATEWAY_ID_PREFIXES:
        if value.lower().startswith(prefix):
            return value[len(prefix):]
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_columns(changes: Dict[str, Any]) -> Dict[str, Any]:
    columns = dict(changes)
    if "voucher_details" in columns and columns["voucher_details"] is not None:
        columns["voucher_details"] = [
            v.model_dump(by_alias=True) if hasattr(v, "model_dump") else dict(v)
            for v in columns["voucher_details"]
        ]
    return columns


class PaymentRepository:

    @staticmethod
    async def _commit(db: AsyncSession, action: str, **context):
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            log.error("payment_store_commit_failed", action=action, error=str(exc), **context)
            raise StoreError(f"Failed to {action} payment record") from exc

    @staticmethod
    async def insert(db: AsyncSession, record: PaymentRecord) -> PaymentRecord:
        now = utcnow()
        values = {
            "id": record.id,
            "order_id": record.order_id,
            "user_id": record.user_id,
            "amount": format_amount(record.amount, record.currency),
            "local_amount": format_amount(record.local_amount, record.local_currency),
            "currency": record.currency,
            "local_currency": record.local_currency,
            "status": record.status,
            "invoice_id": record.invoice_id or None,
            "invoice_url": record.invoice_url or None,
            "metadata": record.metadata,
            "created_at": record.created_at or now,
            "updated_at": record.updated_at or now,
        }
        try:
            await db.execute(insert(payments).values(**values))
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            log.error("payment_store_duplicate", order_id=record.order_id, error=str(exc))
            raise StoreError(f"Payment {record.order_id} already exists") from exc
        except SQLAlchemyError as exc:
            await db.rollback()
            log.error("payment_store_insert_failed", order_id=record.order_id, error=str(exc))
            raise StoreError("Failed to record payment") from exc

        return await PaymentRepository.get(db, record.id)

    @staticmethod
    async def _find_one(db: AsyncSession, clause) -> Optional[PaymentRecord]:
        try:
            result = await db.execute(select(payments).where(clause))
            row = result.mappings().first()
        except SQLAlchemyError as exc:
            log.error("payment_store_read_failed", error=str(exc))
            raise StoreError("Failed to read payment record") from exc
        return PaymentRecord.from_row(row) if row else None

    @staticmethod
    async def get(db: AsyncSession, payment_id: str) -> PaymentRecord:
        record = await PaymentRepository._find_one(db, payments.c.id == payment_id)
        if record is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return record

    @staticmethod
    async def find_by_order_id(db: AsyncSession, order_id: str) -> Optional[PaymentRecord]:
        return await PaymentRepository._find_one(db, payments.c.order_id == order_id)

    @staticmethod
    async def find_by_invoice_id(db: AsyncSession, invoice_id: str) -> Optional[PaymentRecord]:
        return await PaymentRepository._find_one(db, payments.c.invoice_id == invoice_id)

    @staticmethod
    async def resolve(db: AsyncSession, identifier: str) -> Optional[PaymentRecord]:
        """Look a payment up by order id first, then by gateway invoice id."""
        key = strip_gateway_prefix(identifier)
        if not key:
            return None
        record = await PaymentRepository.find_by_order_id(db, key)
        if record is None:
            record = await PaymentRepository.find_by_invoice_id(db, key)
        return record

    @staticmethod
    async def update(db: AsyncSession, payment_id: str, **changes) -> PaymentRecord:
        """Write the changed columns plus updated_at in one statement."""
        values = _to_columns(changes)
        values["updated_at"] = utcnow()
        try:
            result = await db.execute(update(payments).where(payments.c.id == payment_id).values(**values))
        except SQLAlchemyError as exc:
            await db.rollback()
            log.error("payment_store_update_failed", payment_id=payment_id, error=str(exc))
            raise StoreError("Failed to update payment record") from exc
        await PaymentRepository._commit(db, "update", payment_id=payment_id)

        if result.rowcount == 0:
            raise NotFoundError(f"Payment {payment_id} not found")
        return await PaymentRepository.get(db, payment_id)

    @staticmethod
    async def claim_fulfillment(
        db: AsyncSession,
        payment_id: str,
        stale_after: float = FULFILLMENT_CLAIM_TIMEOUT_SECONDS,
    ) -> bool:
        """Atomically mark the payment as being fulfilled.

        Succeeds for exactly one caller while no vouchers are recorded and no
        other claim is live; a failed attempt may be claimed again, and so
        may a claim older than ``stale_after`` seconds whose worker died.
        """
        now = utcnow()
        stale = payments.c.fulfillment_claimed_at < now - timedelta(seconds=stale_after)
        stmt = (
            update(payments)
            .where(
                payments.c.id == payment_id,
                payments.c.voucher_details.is_(None),
                or_(
                    payments.c.fulfillment_state.is_(None),
                    payments.c.fulfillment_state == FULFILLMENT_FAILED,
                    and_(
                        payments.c.fulfillment_state == FULFILLMENT_IN_PROGRESS,
                        or_(payments.c.fulfillment_claimed_at.is_(None), stale),
                    ),
                ),
            )
            .values(fulfillment_state=FULFILLMENT_IN_PROGRESS, fulfillment_claimed_at=now, updated_at=now)
        )
        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as exc:
            await db.rollback()
            log.error("payment_store_claim_failed", payment_id=payment_id, error=str(exc))
            raise StoreError("Failed to claim payment for fulfillment") from exc
        await PaymentRepository._commit(db, "claim", payment_id=payment_id)
        return result.rowcount == 1

    @staticmethod
    async def release_fulfillment(db: AsyncSession, payment_id: str) -> None:
        stmt = (
            update(payments)
            .where(
                payments.c.id == payment_id,
                payments.c.fulfillment_state == FULFILLMENT_IN_PROGRESS,
            )
            .values(fulfillment_state=FULFILLMENT_FAILED, fulfillment_claimed_at=None, updated_at=utcnow())
        )
        try:
            await db.execute(stmt)
        except SQLAlchemyError as exc:
            await db.rollback()
            log.error("payment_store_release_failed", payment_id=payment_id, error=str(exc))
            raise StoreError("Failed to release fulfillment claim") from exc
        await PaymentRepository._commit(db, "release", payment_id=payment_id)
