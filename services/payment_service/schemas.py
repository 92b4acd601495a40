from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.errors import PaymentCoreError
from services.order_service.schemas import Voucher

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Persistence boundary ---

# Column names seen across schema versions, first match wins
RECORD_FIELD_NAMES: Dict[str, tuple] = {
    "id": ("id",),
    "order_id": ("order_id", "orderId"),
    "user_id": ("user_id", "userId"),
    "amount": ("amount",),
    "local_amount": ("local_amount", "localAmount", "display_amount", "displayAmount"),
    "currency": ("currency",),
    "local_currency": ("local_currency", "localCurrency"),
    "status": ("status",),
    "invoice_id": ("invoice_id", "invoiceId", "txn_id"),
    "invoice_url": ("invoice_url", "invoiceUrl"),
    "voucher_details": ("voucher_details", "voucherDetails"),
    "fulfillment_state": ("fulfillment_state", "fulfillmentState"),
    "metadata": ("metadata", "meta"),
    "created_at": ("created_at", "createdAt"),
    "updated_at": ("updated_at", "updatedAt"),
}

RECORD_ZERO_VALUES: Dict[str, Any] = {
    "amount": Decimal("0"),
    "local_amount": Decimal("0"),
    "voucher_details": None,
    "metadata": {},
    "created_at": None,
    "updated_at": None,
}


class PaymentRecord(CamelModel):
    id: str = ""
    order_id: str = ""
    user_id: str = ""
    amount: Decimal = Decimal("0")
    local_amount: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("local_amount", "localAmount", "display_amount", "displayAmount"),
    )
    currency: str = ""
    local_currency: str = ""
    status: str = ""
    invoice_id: str = ""
    invoice_url: str = ""
    voucher_details: Optional[List[Voucher]] = None
    fulfillment_state: str = ""
    metadata: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", "order_id", "user_id", mode="before")
    @classmethod
    def _as_text(cls, value):
        return "" if value is None else str(value)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PaymentRecord":
        """Build a record from a raw storage row in either naming convention.

        Absent or NULL columns become empty strings, zero amounts or empty
        bags instead of failing.
        """
        data: Dict[str, Any] = {}
        for field, names in RECORD_FIELD_NAMES.items():
            value = next((row[name] for name in names if name in row and row[name] is not None), None)
            if value is None:
                value = RECORD_ZERO_VALUES.get(field, "")
            data[field] = value
        return cls.model_validate(data)


class PaymentSummary(CamelModel):
    order_id: str
    invoice_id: str
    invoice_url: str
    amount: Decimal
    currency: str
    status: str


class ServiceResult(BaseModel, Generic[T]):
    """Tagged outcome of a public payment operation; never raised."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "ServiceResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: PaymentCoreError, data: Optional[T] = None) -> "ServiceResult[T]":
        return cls(success=False, data=data, error=exc.message, error_code=exc.code)


# --- API requests ---

class PaymentCreate(CamelModel):
    user_id: Union[str, int]
    amount: Decimal
    local_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    email: Optional[str] = None
    metadata: Dict[str, Any] = {}


# --- Gateway payloads ---

class GatewayModel(BaseModel):
    # Provider fields we do not model stay available in model_extra
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class InvoiceData(GatewayModel):
    txn_id: str = Field(validation_alias=AliasChoices("txn_id", "id"))
    invoice_url: str
    invoice_total_sum: Optional[Decimal] = None

    @field_validator("invoice_total_sum", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        return None if value in ("", None) else value


class StatusInfo(GatewayModel):
    txn_id: str = Field(validation_alias=AliasChoices("txn_id", "id"))
    status: str
    order_number: Optional[str] = None


class CallbackPayload(GatewayModel):
    order_number: Optional[str] = None
    txn_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[str] = None
    verify_hash: Optional[str] = None

    @field_validator("order_number", "txn_id", "status", "amount", mode="before")
    @classmethod
    def _as_text(cls, value):
        return None if value is None else str(value)

    @property
    def correlation_id(self) -> Optional[str]:
        return self.order_number or self.txn_id
