from typing import List, Optional
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class PartnerModel(BaseModel):
    # Partner API speaks camelCase; unknown fields are kept in model_extra
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Voucher(PartnerModel):
    id: str = ""
    card_type: str = ""  # PIN_SECURED | CARD_NO_AND_PIN
    card_number: Optional[str] = None
    card_pin: Optional[str] = None
    valid_till: str = ""
    amount: str = ""

    @field_validator("id", "amount", "valid_till", mode="before")
    @classmethod
    def _as_text(cls, value):
        return "" if value is None else str(value)


class DenominationDetail(PartnerModel):
    denomination: float
    quantity: int = 1


class ContactDetails(PartnerModel):
    name: str
    phone_number: str
    email: Optional[str] = None


class OrderRequest(PartnerModel):
    product_id: str
    reference_id: str
    amount: float
    denomination_details: List[DenominationDetail]
    customer_details: ContactDetails
    recipient_details: ContactDetails


class OrderResponse(PartnerModel):
    id: str = ""
    reference_id: str = ""
    status: str = ""  # SUCCESS | FAILED | PROCESSING | REVERSED
    vouchers: List[Voucher] = []
    failure_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status.upper() == "SUCCESS" and len(self.vouchers) > 0
