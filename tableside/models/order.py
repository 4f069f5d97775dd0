from enum import Enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

ZERO = Decimal("0")


class OrderStatus(str, Enum):
    PENDING = "Pending"
    IN_KITCHEN = "InKitchen"
    SERVED = "Served"
    CANCELLED = "Cancelled"
    PAID = "Paid"
    COMPLETED = "Completed"


class ItemStatus(str, Enum):
    PENDING = "Pending"
    COOKING = "Cooking"
    READY = "Ready"
    SERVED = "Served"


# Orders the kitchen is still working on; also the only ones a timeout may cancel
KITCHEN_STATUSES = [OrderStatus.PENDING, OrderStatus.IN_KITCHEN]

# Statuses after which the order no longer holds its table
TABLE_RELEASE_STATUSES = [OrderStatus.CANCELLED, OrderStatus.PAID, OrderStatus.COMPLETED]

# Anything not cancelled/completed still blocks a duplicate submission
DUPLICATE_GUARD_STATUSES = [
    OrderStatus.PENDING,
    OrderStatus.IN_KITCHEN,
    OrderStatus.SERVED,
    OrderStatus.PAID,
]

PAYABLE_STATUSES = [OrderStatus.SERVED, OrderStatus.PENDING, OrderStatus.IN_KITCHEN]


def to_money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItem(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    menu_item: str
    name: str
    quantity: int = Field(ge=1)
    # Captured from the catalog at order time and never re-read
    price: Decimal = Field(ge=0)
    subtotal: Decimal = ZERO
    status: ItemStatus = ItemStatus.PENDING
    notes: str = ""

    def model_post_init(self, __context) -> None:
        self.subtotal = to_money(self.price * self.quantity)

    @field_serializer("price", "subtotal")
    def serialize_money(self, value: Decimal) -> float:
        return float(value)


class Order(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    table_id: str = Field(alias="table")
    customer_name: str
    items: List[OrderItem] = Field(default_factory=list)

    total_amount: Decimal = ZERO
    discount: Decimal = Field(default=ZERO, ge=0)
    final_amount: Decimal = ZERO

    status: OrderStatus = OrderStatus.PENDING
    assigned_waiter: Optional[str] = None
    order_timeout: Optional[datetime] = None
    is_timed_out: bool = False
    cooked_by: Optional[str] = None
    served_by: Optional[str] = None
    note: str = ""

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("total_amount", "discount", "final_amount")
    def serialize_money(self, value: Decimal) -> float:
        return float(value)

    def recalculate_totals(self) -> None:
        """Re-derive every monetary field from the line items"""
        for item in self.items:
            item.subtotal = to_money(item.price * item.quantity)
        self.total_amount = to_money(sum((item.subtotal for item in self.items), ZERO))
        self.final_amount = max(ZERO, self.total_amount - to_money(self.discount or ZERO))

    def append_note(self, line: str) -> None:
        self.note = f"{self.note}\n{line}" if self.note else line

    def find_item(self, item_id: str) -> Optional[OrderItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def derive_status_from_items(self) -> None:
        """Move the order forward from kitchen progress; never moves it back"""
        if self.items and all(item.status == ItemStatus.SERVED for item in self.items):
            if self.status in KITCHEN_STATUSES:
                self.status = OrderStatus.SERVED
        elif self.status == OrderStatus.PENDING and any(
            item.status in (ItemStatus.COOKING, ItemStatus.READY) for item in self.items
        ):
            self.status = OrderStatus.IN_KITCHEN

    def items_by_status(self) -> Dict[str, List[Dict[str, Any]]]:
        grouped = {"pending": [], "cooking": [], "ready": []}
        for item in self.items:
            key = item.status.value.lower()
            if key in grouped:
                grouped[key].append(item.model_dump(mode="json", by_alias=True))
        return grouped

    def stats(self) -> Dict[str, int]:
        counts = {status: 0 for status in ItemStatus}
        for item in self.items:
            counts[item.status] += 1
        return {
            "totalItems": len(self.items),
            "totalQuantity": sum(item.quantity for item in self.items),
            "pendingItems": counts[ItemStatus.PENDING],
            "cookingItems": counts[ItemStatus.COOKING],
            "readyItems": counts[ItemStatus.READY],
            "servedItems": counts[ItemStatus.SERVED],
        }

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"created_at", "updated_at"})

    def to_response(self, with_stats: bool = False) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        if with_stats:
            data["orderStats"] = self.stats()
        return data
