"""Collection repositories used by the order and payment services"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..database import DocumentStore
from ..models.order import Order, OrderStatus, KITCHEN_STATUSES
from ..models.payment import Payment, PaymentStatus
from ..models.table import Table, TableStatus
from ..models.user import StaffMember, FLOOR_ROLES


def _values(statuses: Sequence[Any]) -> List[str]:
    return [getattr(s, "value", s) for s in statuses]


class OrderStore:
    TABLE = "orders"

    def __init__(self, db: DocumentStore):
        self.db = db

    async def get(self, order_id: str) -> Optional[Order]:
        doc = await self.db.get(self.TABLE, order_id)
        return Order.model_validate(doc) if doc else None

    async def insert(self, order: Order) -> Order:
        data = order.to_document()
        if order.created_at:
            data["created_at"] = order.created_at
        doc = await self.db.insert(self.TABLE, data)
        return Order.model_validate(doc)

    async def save(self, order: Order) -> Order:
        """Write the whole aggregate back (items and derived totals included)"""
        data = order.to_document()
        data.pop("id")
        doc = await self.db.update(self.TABLE, order.id, data)
        return Order.model_validate(doc) if doc else order

    async def update_fields(self, order_id: str, **fields: Any) -> Optional[Order]:
        data = {k: getattr(v, "value", v) for k, v in fields.items()}
        doc = await self.db.update(self.TABLE, order_id, data)
        return Order.model_validate(doc) if doc else None

    async def count_in_statuses(self, statuses: Sequence[OrderStatus]) -> int:
        return await self.db.count(self.TABLE, in_={"status": _values(statuses)})

    async def count_assigned(self, waiter_id: str) -> int:
        return await self.db.count(
            self.TABLE,
            eq={"assigned_waiter": waiter_id},
            in_={"status": _values(KITCHEN_STATUSES)},
        )

    async def find_recent(self, table_id: str, customer_name: str, since: datetime,
                          statuses: Sequence[OrderStatus]) -> Optional[Order]:
        docs = await self.db.find(
            self.TABLE,
            eq={"table_id": table_id, "customer_name": customer_name},
            in_={"status": _values(statuses)},
            gte={"created_at": since},
            order_by="created_at",
            desc=True,
            limit=1,
        )
        return Order.model_validate(docs[0]) if docs else None

    async def find_by_statuses(self, statuses: Sequence[OrderStatus], **extra_eq: Any) -> List[Order]:
        """Oldest first"""
        docs = await self.db.find(
            self.TABLE,
            eq=extra_eq or None,
            in_={"status": _values(statuses)},
            order_by="created_at",
        )
        return [Order.model_validate(d) for d in docs]

    async def find_by_table(self, table_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        eq = {"table_id": table_id}
        if status:
            eq["status"] = status.value
        docs = await self.db.find(self.TABLE, eq=eq, order_by="created_at", desc=True)
        return [Order.model_validate(d) for d in docs]

    async def page(self, eq: Dict[str, Any], gte: Dict[str, Any], lte: Dict[str, Any],
                   order_by: str, desc: bool, limit: int, offset: int) -> Tuple[List[Order], int]:
        docs = await self.db.find(self.TABLE, eq=eq, gte=gte, lte=lte, order_by=order_by,
                                  desc=desc, limit=limit, offset=offset)
        total = await self.db.count(self.TABLE, eq=eq, gte=gte, lte=lte)
        return [Order.model_validate(d) for d in docs], total


class TableRegistry:
    TABLE = "tables"

    def __init__(self, db: DocumentStore):
        self.db = db

    async def get(self, table_id: str) -> Optional[Table]:
        doc = await self.db.get(self.TABLE, table_id)
        return Table.model_validate(doc) if doc else None

    async def occupy(self, table_id: str, order_id: str, waiter_id: Optional[str] = None) -> Optional[Table]:
        data = {"status": TableStatus.OCCUPIED.value, "current_order": order_id}
        if waiter_id:
            data["assigned_waiter"] = waiter_id
        doc = await self.db.update(self.TABLE, table_id, data)
        return Table.model_validate(doc) if doc else None

    async def release(self, table_id: str, order_id: Optional[str] = None) -> bool:
        """Free the table; when order_id is given, only if it still points at that order"""
        if order_id is not None:
            table = await self.get(table_id)
            if table is None or table.current_order != order_id:
                return False
        doc = await self.db.update(
            self.TABLE, table_id,
            {"status": TableStatus.AVAILABLE.value, "current_order": None},
        )
        return doc is not None

    async def set_status(self, table_id: str, status: TableStatus) -> Optional[Table]:
        doc = await self.db.update(self.TABLE, table_id, {"status": status.value})
        return Table.model_validate(doc) if doc else None

    async def assign_waiter(self, table_id: str, waiter_id: Optional[str]) -> Optional[Table]:
        doc = await self.db.update(self.TABLE, table_id, {"assigned_waiter": waiter_id})
        return Table.model_validate(doc) if doc else None

    async def page(self, eq: Dict[str, Any], limit: int, offset: int) -> Tuple[List[Table], int]:
        docs = await self.db.find(self.TABLE, eq=eq, order_by="table_number", limit=limit, offset=offset)
        total = await self.db.count(self.TABLE, eq=eq)
        return [Table.model_validate(d) for d in docs], total

    async def floor_summary(self) -> Dict[str, int]:
        tables = [Table.model_validate(d) for d in await self.db.find(self.TABLE)]
        summary = {"total": len(tables), "totalCapacity": sum(t.capacity for t in tables)}
        for status in TableStatus:
            summary[status.value.lower()] = sum(1 for t in tables if t.status == status)
        return summary


class PaymentStore:
    TABLE = "payments"

    def __init__(self, db: DocumentStore):
        self.db = db

    async def get(self, payment_id: str) -> Optional[Payment]:
        doc = await self.db.get(self.TABLE, payment_id)
        return Payment.model_validate(doc) if doc else None

    async def insert(self, payment: Payment) -> Payment:
        doc = await self.db.insert(self.TABLE, payment.to_document())
        return Payment.model_validate(doc)

    async def update_fields(self, payment_id: str, **fields: Any) -> Optional[Payment]:
        data = {k: getattr(v, "value", v) for k, v in fields.items()}
        doc = await self.db.update(self.TABLE, payment_id, data)
        return Payment.model_validate(doc) if doc else None

    async def find_for_order(self, order_id: str,
                             statuses: Optional[Sequence[PaymentStatus]] = None) -> List[Payment]:
        docs = await self.db.find(
            self.TABLE,
            eq={"order_id": order_id},
            in_={"payment_status": _values(statuses)} if statuses else None,
            order_by="payment_time",
        )
        return [Payment.model_validate(d) for d in docs]

    async def find(self, eq: Optional[Dict[str, Any]] = None, gte: Optional[Dict[str, Any]] = None,
                   lte: Optional[Dict[str, Any]] = None, order_by: str = "payment_time",
                   desc: bool = False) -> List[Payment]:
        docs = await self.db.find(self.TABLE, eq=eq, gte=gte, lte=lte, order_by=order_by, desc=desc)
        return [Payment.model_validate(d) for d in docs]

    async def page(self, eq: Dict[str, Any], gte: Dict[str, Any], lte: Dict[str, Any],
                   order_by: str, desc: bool, limit: int, offset: int) -> Tuple[List[Payment], int]:
        docs = await self.db.find(self.TABLE, eq=eq, gte=gte, lte=lte, order_by=order_by,
                                  desc=desc, limit=limit, offset=offset)
        total = await self.db.count(self.TABLE, eq=eq, gte=gte, lte=lte)
        return [Payment.model_validate(d) for d in docs], total


class MenuCatalog:
    """Read-only view of the menu"""
    TABLE = "menu_items"
    AVAILABLE = "Available"

    def __init__(self, db: DocumentStore):
        self.db = db

    async def get(self, menu_item_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.get(self.TABLE, menu_item_id)


class StaffDirectory:
    TABLE = "profiles"

    def __init__(self, db: DocumentStore):
        self.db = db

    async def get(self, user_id: str) -> Optional[StaffMember]:
        doc = await self.db.get(self.TABLE, user_id)
        return StaffMember.model_validate(doc) if doc else None

    async def active_floor_staff(self) -> List[StaffMember]:
        """Active waiters/staff in enumeration order"""
        docs = await self.db.find(
            self.TABLE,
            eq={"is_active": True},
            in_={"role": [r.value for r in FLOOR_ROLES]},
            order_by="created_at",
        )
        return [StaffMember.model_validate(d) for d in docs]
