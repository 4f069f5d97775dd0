from enum import Enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from pydantic import Field, field_serializer

from .order import CamelModel


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CARD = "Card"
    FONEPAY = "Fonepay"
    NEPALPAY = "NepalPay"
    KHALTI = "Khalti"


class PaymentStatus(str, Enum):
    PAID = "Paid"
    PENDING = "Pending"
    FAILED = "Failed"
    REFUNDED = "Refunded"


# At most one of these may exist per order
ACTIVE_PAYMENT_STATUSES = [PaymentStatus.PAID, PaymentStatus.PENDING]

# Methods settled on the spot; everything else waits for a confirmation
IMMEDIATE_METHODS = [PaymentMethod.CASH]


class Payment(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str = Field(alias="order")
    table_id: Optional[str] = Field(default=None, alias="table")
    # Negative for refund records
    amount: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    handled_by: Optional[str] = None
    transaction_id: Optional[str] = None
    khalti_pidx: Optional[str] = None
    payment_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> float:
        return float(value)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude={"created_at", "updated_at"})

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
