from decimal import Decimal
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import Path
from pydantic import Field

from ..models.order import CamelModel, OrderStatus, ItemStatus
from ..models.payment import PaymentMethod, PaymentStatus
from ..models.table import TableStatus

UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"

# path ids map to uuid columns
ResourceId = Annotated[str, Path(pattern=UUID_PATTERN)]

# -----------------------------
# Orders
# -----------------------------

class OrderItemIn(CamelModel):
    menu_item: UUID
    quantity: int = Field(..., ge=1)
    notes: Optional[str] = None

class OrderCreate(CamelModel):
    table_id: UUID
    customer_name: str = Field(..., min_length=1, max_length=100)
    items: List[OrderItemIn] = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=500)
    discount: Decimal = Field(Decimal("0"), ge=0)

class OrderStatusUpdate(CamelModel):
    status: OrderStatus
    cooked_by: Optional[UUID] = None
    served_by: Optional[UUID] = None

class OrderItemStatusUpdate(CamelModel):
    status: ItemStatus
    notes: Optional[str] = None

class OrderItemsAdd(CamelModel):
    items: List[OrderItemIn] = Field(..., min_length=1)

class OrderCancel(CamelModel):
    reason: Optional[str] = Field(None, max_length=500)

# -----------------------------
# Payments
# -----------------------------

class PaymentCreate(CamelModel):
    order_id: UUID
    payment_method: PaymentMethod
    amount: Decimal = Field(..., gt=0)
    transaction_id: Optional[str] = None
    handled_by: Optional[UUID] = None

class PaymentStatusUpdate(CamelModel):
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None
    handled_by: Optional[UUID] = None

class RefundCreate(CamelModel):
    refund_amount: Optional[Decimal] = None
    reason: Optional[str] = None
    handled_by: Optional[UUID] = None

class KhaltiVerify(CamelModel):
    pidx: str = Field(..., min_length=1)

# -----------------------------
# Tables
# -----------------------------

class TableStatusUpdate(CamelModel):
    status: TableStatus

class TableWaiterAssign(CamelModel):
    waiter_id: Optional[UUID] = None
