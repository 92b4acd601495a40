from sqlalchemy import Column, String, DateTime, JSON, func
from shared.config.database import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    # Monetary values are exact decimal text, never floats
    amount = Column(String(40), nullable=False)        # settlement currency (crypto)
    local_amount = Column(String(40), nullable=False, default="0")  # user-facing fiat
    currency = Column(String(16), nullable=False)
    local_currency = Column(String(16), nullable=False, default="INR")
    status = Column(String(32), nullable=False, default="new")  # new, pending, completed, mismatch, expired, ...
    invoice_id = Column(String(128), nullable=True, index=True)  # gateway txn_id
    invoice_url = Column(String(512), nullable=True)
    voucher_details = Column(JSON(none_as_null=True), nullable=True)  # NULL until fulfilled
    fulfillment_state = Column(String(16), nullable=True)  # in_progress, fulfilled, failed
    fulfillment_claimed_at = Column(DateTime(timezone=True), nullable=True)
    extra = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
