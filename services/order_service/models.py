from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey, func
from shared.config.database import Base


class PartnerOrder(Base):
    __tablename__ = "partner_orders"

    id = Column(Integer, primary_key=True, index=True)
    partner_order_id = Column(String(128), nullable=False, index=True)  # from the partner response
    reference_id = Column(String(64), nullable=False, index=True)  # payment order_id, idempotency key
    status = Column(String(32), nullable=False)  # SUCCESS, PROCESSING, FAILED, REVERSED
    raw_response = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PartnerVoucher(Base):
    __tablename__ = "partner_vouchers"

    id = Column(Integer, primary_key=True, index=True)
    partner_voucher_id = Column(String(128), nullable=False)
    order_id = Column(Integer, ForeignKey("partner_orders.id"), nullable=False, index=True)
    card_type = Column(String(32), nullable=False)
    card_pin = Column(String(128), nullable=True)
    card_number = Column(String(128), nullable=True)
    valid_till = Column(String(64), nullable=True)
    amount = Column(String(40), nullable=True)
    raw_response = Column(JSON, nullable=False)


class PartnerToken(Base):
    """Single-row store for the partner API bearer token."""

    __tablename__ = "partner_tokens"

    id = Column(Integer, primary_key=True)
    token = Column(String(2048), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
