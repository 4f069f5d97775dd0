from typing import Any, Dict, List, Optional, Sequence, Tuple
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from ..config import settings
from ..core.cache import CacheKeys, invalidate_order_cache
from ..core.errors import ValidationFailed, NotFound, Conflict, KitchenAtCapacity
from ..models.order import (
    Order,
    OrderItem,
    OrderStatus,
    KITCHEN_STATUSES,
    TABLE_RELEASE_STATUSES,
    DUPLICATE_GUARD_STATUSES,
    to_money,
)
from ..models.table import Table
from ..services.redis import RedisClient
from ..services.stores import OrderStore, TableRegistry, MenuCatalog, StaffDirectory
from ..services.timeout_scheduler import OrderTimeoutScheduler
from ..utils.time import utc_now

logger = logging.getLogger(__name__)

ADD_ITEMS_BLOCKED = [OrderStatus.CANCELLED, OrderStatus.PAID, OrderStatus.COMPLETED]
CANCEL_BLOCKED = [OrderStatus.SERVED, OrderStatus.PAID, OrderStatus.COMPLETED]

SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "totalAmount": "total_amount",
    "finalAmount": "final_amount",
    "status": "status",
}


class OrderService:
    """Order lifecycle: creation, kitchen progress, cancellation, timeout, completion.

    Order and table documents are written in separate calls. A rejected
    request is validated before its first write, but two concurrent requests
    touching the same order/table are last-write-wins.
    """

    def __init__(
        self,
        orders: OrderStore,
        tables: TableRegistry,
        menu: MenuCatalog,
        staff: StaffDirectory,
        scheduler: OrderTimeoutScheduler,
        notifier=None,
        cache: Optional[RedisClient] = None,
        max_kitchen_orders: int = settings.MAX_KITCHEN_ORDERS,
        duplicate_window_minutes: int = settings.DUPLICATE_ORDER_WINDOW_MINUTES,
        timeout_minutes: int = settings.ORDER_TIMEOUT_MINUTES,
        clock=utc_now,
    ):
        self.orders = orders
        self.tables = tables
        self.menu = menu
        self.staff = staff
        self.scheduler = scheduler
        self.notifier = notifier
        self.cache = cache
        self.max_kitchen_orders = max_kitchen_orders
        self.duplicate_window = timedelta(minutes=duplicate_window_minutes)
        self.timeout_minutes = timeout_minutes
        self.clock = clock

        scheduler.bind(self.handle_timeout)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _emit(self, event: str, order: Order):
        invalidate_order_cache(self.cache, order.id)
        if self.notifier is None:
            return
        try:
            await self.notifier.emit_order_event(
                event, order_id=order.id, table_id=order.table_id, order=order.to_response()
            )
        except Exception:
            logger.exception("Failed to emit %s for order %s", event, order.id)

    async def _release(self, order: Order):
        """Stop the timer and free the table if it still belongs to this order"""
        self.scheduler.disarm(order.id)
        released = await self.tables.release(order.table_id, order.id)
        if not released:
            logger.warning(
                "Table %s no longer points at order %s; left unchanged", order.table_id, order.id
            )

    async def get_order(self, order_id: str) -> Order:
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    async def price_items(self, items: Sequence[Any]) -> List[OrderItem]:
        """Validate requested items against the catalog and price them server-side"""
        errors = []
        priced = []

        for index, item in enumerate(items, start=1):
            menu_item_id = str(item.menu_item) if item.menu_item else None
            if not menu_item_id or not item.quantity or item.quantity < 1:
                errors.append(f"Item {index}: Menu item ID and valid quantity are required")
                continue

            menu_item = await self.menu.get(menu_item_id)
            if not menu_item:
                errors.append(f"Item {index}: Menu item not found")
                continue

            if menu_item.get("availability_status") != MenuCatalog.AVAILABLE:
                errors.append(f"Item {index}: {menu_item['name']} is currently out of stock")
                continue

            priced.append(OrderItem(
                menu_item=menu_item_id,
                name=menu_item["name"],
                quantity=int(item.quantity),
                price=to_money(menu_item["price"]),
                notes=(item.notes or "").strip(),
            ))

        if errors:
            raise ValidationFailed("Invalid items found", errors=errors)
        return priced

    async def kitchen_capacity(self) -> Dict[str, Any]:
        active = await self.orders.count_in_statuses(KITCHEN_STATUSES)
        can_accept = active < self.max_kitchen_orders
        return {
            "canAcceptOrder": can_accept,
            "activeOrders": active,
            "maxCapacity": self.max_kitchen_orders,
            "utilizationPercent": round(active / self.max_kitchen_orders * 100) if self.max_kitchen_orders else 100,
            "status": "available" if can_accept else "at_capacity",
        }

    async def check_kitchen_capacity(self):
        try:
            capacity = await self.kitchen_capacity()
        except Exception:
            # Admission control must not take ordering down with it
            logger.exception("Error checking kitchen capacity; accepting order")
            return
        if not capacity["canAcceptOrder"]:
            raise KitchenAtCapacity(capacity["activeOrders"], capacity["maxCapacity"])

    async def auto_assign_waiter(self, table: Table) -> Optional[str]:
        """Reuse the table's waiter, else the active floor staff member with the fewest kitchen orders.

        Ties go to whoever the directory lists first; that order carries no meaning.
        """
        if table.assigned_waiter:
            return table.assigned_waiter

        try:
            candidates = await self.staff.active_floor_staff()
            if not candidates:
                return None

            workloads = []
            for waiter in candidates:
                workloads.append((await self.orders.count_assigned(waiter.id), waiter.id))
            return min(workloads, key=lambda w: w[0])[1]
        except Exception:
            logger.exception("Error in auto-assign waiter for table %s", table.id)
            return None

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def create_order(
        self,
        table_id: str,
        customer_name: str,
        items: Sequence[Any],
        note: Optional[str] = None,
        discount: Decimal = Decimal("0"),
    ) -> Order:
        customer_name = (customer_name or "").strip()
        if not table_id or not customer_name or not items:
            raise ValidationFailed("Table ID, customer name, and items are required")

        table = await self.tables.get(table_id)
        if table is None:
            raise NotFound("Table not found")

        line_items = await self.price_items(items)

        now = self.clock()
        existing = await self.orders.find_recent(
            table_id, customer_name, now - self.duplicate_window, DUPLICATE_GUARD_STATUSES
        )
        if existing:
            raise Conflict(
                "A recent order already exists for this customer on this table",
                data=existing.to_response(),
            )

        await self.check_kitchen_capacity()

        waiter_id = await self.auto_assign_waiter(table)

        order = Order(
            table_id=table_id,
            customer_name=customer_name,
            items=line_items,
            discount=to_money(discount or 0),
            status=OrderStatus.PENDING,
            assigned_waiter=waiter_id,
            order_timeout=now + timedelta(minutes=self.timeout_minutes),
            note=(note or "").strip(),
            created_at=now,
        )
        order.recalculate_totals()

        saved = await self.orders.insert(order)
        await self.tables.occupy(table_id, saved.id, waiter_id)
        self.scheduler.arm(saved.id, self.timeout_minutes)

        logger.info("Order %s created for table %s, customer: %s", saved.id, table.table_number, customer_name)
        await self._emit("order:new", saved)
        return saved

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        cooked_by: Optional[str] = None,
        served_by: Optional[str] = None,
    ) -> Order:
        """Set any legal status value; no transition graph is enforced here"""
        await self.get_order(order_id)

        if cooked_by and await self.staff.get(cooked_by) is None:
            raise ValidationFailed("Invalid cook ID")
        if served_by and await self.staff.get(served_by) is None:
            raise ValidationFailed("Invalid server ID")

        changes: Dict[str, Any] = {"status": status}
        if cooked_by:
            changes["cooked_by"] = cooked_by
        if served_by:
            changes["served_by"] = served_by

        order = await self.orders.update_fields(order_id, **changes)
        if order is None:
            raise NotFound("Order not found")

        if status in TABLE_RELEASE_STATUSES:
            await self._release(order)

        await self._emit("order:status-updated", order)
        return order

    async def update_item_status(
        self,
        order_id: str,
        item_id: str,
        status,
        notes: Optional[str] = None,
    ) -> Tuple[Order, OrderItem]:
        order = await self.get_order(order_id)
        item = order.find_item(item_id)
        if item is None:
            raise NotFound("Order item not found")

        item.status = status
        if notes is not None:
            item.notes = notes.strip()

        order.derive_status_from_items()
        saved = await self.orders.save(order)

        await self._emit("order:item-updated", saved)
        return saved, saved.find_item(item_id) or item

    async def add_items(self, order_id: str, items: Sequence[Any]) -> Order:
        if not items:
            raise ValidationFailed("Items array is required")

        order = await self.get_order(order_id)
        if order.status in ADD_ITEMS_BLOCKED:
            raise ValidationFailed(f"Cannot add items to {order.status.value.lower()} order")

        order.items.extend(await self.price_items(items))
        order.recalculate_totals()
        saved = await self.orders.save(order)

        await self._emit("order:items-added", saved)
        return saved

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> Order:
        order = await self.get_order(order_id)
        if order.status in CANCEL_BLOCKED:
            raise ValidationFailed(f"Cannot cancel {order.status.value.lower()} order")

        reason = (reason or "").strip()
        order.append_note(f"Cancelled: {reason}" if reason else "[CANCELLED BY STAFF]")

        saved = await self.orders.update_fields(order_id, status=OrderStatus.CANCELLED, note=order.note)
        saved = saved or order
        await self._release(saved)

        logger.info("Order %s cancelled", order_id)
        await self._emit("order:cancelled", saved)
        return saved

    async def complete_order(self, order_id: str) -> Order:
        order = await self.get_order(order_id)
        if order.status != OrderStatus.PAID:
            raise ValidationFailed("Order must be paid before completion")

        saved = await self.orders.update_fields(order_id, status=OrderStatus.COMPLETED) or order
        await self._release(saved)

        logger.info("Order %s completed and table cleared", order_id)
        await self._emit("order:status-updated", saved)
        return saved

    async def mark_paid(self, order_id: str) -> Optional[Order]:
        """Single path for an order becoming Paid: status, timer and table together"""
        order = await self.orders.update_fields(order_id, status=OrderStatus.PAID)
        if order is None:
            logger.warning("Payment references missing order %s", order_id)
            return None
        await self._release(order)
        await self._emit("order:status-updated", order)
        return order

    async def revert_to_served(self, order_id: str) -> Optional[Order]:
        order = await self.orders.update_fields(order_id, status=OrderStatus.SERVED)
        if order is not None:
            await self._emit("order:status-updated", order)
        return order

    async def handle_timeout(self, order_id: str):
        """Auto-cancel an order whose deadline passed; the status re-check happens here, at fire time"""
        order = await self.orders.get(order_id)
        if order is None:
            logger.info("Order %s not found during timeout", order_id)
            return

        if order.status not in KITCHEN_STATUSES:
            logger.info("Order %s already processed (%s), skipping timeout", order_id, order.status.value)
            return

        order.append_note("[AUTO-CANCELLED: Order timed out]")
        saved = await self.orders.update_fields(
            order_id, status=OrderStatus.CANCELLED, is_timed_out=True, note=order.note
        ) or order
        await self.tables.release(saved.table_id, saved.id)

        logger.info("Order %s timed out and cancelled", order_id)
        await self._emit("order:cancelled", saved)

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    async def get_kitchen_orders(self, status_filter: str = OrderStatus.IN_KITCHEN.value) -> List[Dict[str, Any]]:
        """Kitchen queue, oldest first, items grouped by kitchen status"""
        if status_filter == "all":
            statuses = KITCHEN_STATUSES
        elif status_filter in [s.value for s in KITCHEN_STATUSES]:
            statuses = [OrderStatus(status_filter)]
        else:
            raise ValidationFailed("Status must be one of: all, Pending, InKitchen")

        cache_key = CacheKeys.KITCHEN_QUEUE.format(status=status_filter)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if isinstance(cached, list):
                return cached

        queue = await self.orders.find_by_statuses(statuses)
        data = [{**order.to_response(), "itemsByStatus": order.items_by_status()} for order in queue]

        if self.cache is not None:
            self.cache.set(cache_key, data, settings.KITCHEN_QUEUE_CACHE_SECONDS)
        return data

    async def get_order_detail(self, order_id: str) -> Dict[str, Any]:
        cache_key = CacheKeys.ORDER_DETAIL.format(order_id=order_id)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if isinstance(cached, dict):
                return cached

        data = (await self.get_order(order_id)).to_response(with_stats=True)
        if self.cache is not None:
            self.cache.set(cache_key, data, 30)
        return data

    async def orders_for_table(self, table_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        return await self.orders.find_by_table(table_id, status)

    async def list_orders(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[OrderStatus] = None,
        table_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> Tuple[List[Order], int]:
        eq: Dict[str, Any] = {}
        if status:
            eq["status"] = status.value
        if table_id:
            eq["table_id"] = table_id
        gte = {"created_at": start_date} if start_date else {}
        lte = {"created_at": end_date} if end_date else {}

        return await self.orders.page(
            eq, gte, lte,
            order_by=SORT_FIELDS.get(sort_by, "created_at"),
            desc=sort_order != "asc",
            limit=limit,
            offset=(page - 1) * limit,
        )
