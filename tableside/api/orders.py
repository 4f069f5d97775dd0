from fastapi import APIRouter, Depends, Request, Query, status
from typing import Optional
from datetime import datetime

from ..models.order import OrderStatus
from ..core.permissions import require_staff
from ..core.activity_logger import log_activity
from ..utils.pagination import build_pagination_metadata, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .order_service import OrderService, SORT_FIELDS
from .schemas import (
    OrderCreate,
    OrderStatusUpdate,
    OrderItemStatusUpdate,
    OrderItemsAdd,
    OrderCancel,
    ResourceId,
)

router = APIRouter(prefix="/orders", tags=["Orders"])


def get_order_service(request: Request) -> OrderService:
    return request.app.state.orders


# -----------------------------
# Customer-facing (QR) routes
# -----------------------------

@router.post("/public", status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    service: OrderService = Depends(get_order_service),
):
    order = await service.create_order(
        table_id=str(payload.table_id),
        customer_name=payload.customer_name,
        items=payload.items,
        note=payload.note,
        discount=payload.discount,
    )
    return {
        "success": True,
        "message": "Order created successfully",
        "data": order.to_response(with_stats=True),
    }

@router.get("/public/table/{table_id}")
async def get_public_table_orders(
    table_id: ResourceId,
    status: Optional[OrderStatus] = None,
    service: OrderService = Depends(get_order_service),
):
    orders = await service.orders_for_table(table_id, status)
    return {
        "success": True,
        "message": "Orders fetched successfully",
        "data": [o.to_response() for o in orders],
    }


# -----------------------------
# Kitchen & monitoring
# -----------------------------

@router.get("/kitchen/queue")
async def get_kitchen_queue(
    status: str = Query(OrderStatus.IN_KITCHEN.value),
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    """FIFO kitchen queue; status is Pending, InKitchen or all"""
    data = await service.get_kitchen_orders(status)
    return {"success": True, "message": "Kitchen orders fetched successfully", "data": data}

@router.get("/kitchen/capacity")
async def get_kitchen_capacity(
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    return {
        "success": True,
        "message": "Kitchen capacity fetched successfully",
        "data": await service.kitchen_capacity(),
    }

@router.get("/timeouts/active")
async def get_active_timeouts(
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    active = service.scheduler.active_timeouts()
    return {
        "success": True,
        "message": "Active timeouts fetched successfully",
        "data": {"count": len(active), "orderIds": active},
    }


# -----------------------------
# Staff routes
# -----------------------------

@router.get("/")
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[OrderStatus] = None,
    table: Optional[str] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    sort_by: str = Query("createdAt", alias="sortBy", pattern="^(" + "|".join(SORT_FIELDS) + ")$"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    orders, total = await service.list_orders(
        page=page,
        limit=limit,
        status=status,
        table_id=table,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "success": True,
        "message": "Orders fetched successfully",
        "data": [o.to_response() for o in orders],
        "pagination": build_pagination_metadata(page, limit, total),
    }

@router.get("/table/{table_id}")
async def get_table_orders(
    table_id: ResourceId,
    status: Optional[OrderStatus] = None,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    orders = await service.orders_for_table(table_id, status)
    return {
        "success": True,
        "message": "Orders fetched successfully",
        "data": [o.to_response() for o in orders],
    }

@router.get("/{order_id}")
async def get_order(
    order_id: ResourceId,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    return {
        "success": True,
        "message": "Order fetched successfully",
        "data": await service.get_order_detail(order_id),
    }

@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: ResourceId,
    payload: OrderStatusUpdate,
    request: Request,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    order = await service.update_order_status(
        order_id,
        payload.status,
        cooked_by=str(payload.cooked_by) if payload.cooked_by else None,
        served_by=str(payload.served_by) if payload.served_by else None,
    )

    await log_activity(
        request.app.state.db, current_user, "update_status", "order", order_id,
        {"status": payload.status.value}, request,
    )

    return {
        "success": True,
        "message": f"Order status updated to {payload.status.value}",
        "data": order.to_response(),
    }

@router.patch("/{order_id}/items/{item_id}/status")
async def update_order_item_status(
    order_id: ResourceId,
    item_id: ResourceId,
    payload: OrderItemStatusUpdate,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    order, item = await service.update_item_status(order_id, item_id, payload.status, payload.notes)
    return {
        "success": True,
        "message": f"Item status updated to {payload.status.value}",
        "data": {
            "order": order.to_response(with_stats=True),
            "updatedItem": item.model_dump(mode="json", by_alias=True),
        },
    }

@router.post("/{order_id}/items")
async def add_items_to_order(
    order_id: ResourceId,
    payload: OrderItemsAdd,
    request: Request,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    order = await service.add_items(order_id, payload.items)

    await log_activity(
        request.app.state.db, current_user, "add_items", "order", order_id,
        {"added": len(payload.items)}, request,
    )

    return {
        "success": True,
        "message": "Items added successfully",
        "data": order.to_response(with_stats=True),
    }

@router.patch("/{order_id}/cancel")
async def cancel_order(
    order_id: ResourceId,
    request: Request,
    payload: Optional[OrderCancel] = None,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    reason = payload.reason if payload else None
    order = await service.cancel_order(order_id, reason)

    await log_activity(
        request.app.state.db, current_user, "cancel", "order", order_id,
        {"reason": reason}, request,
    )

    return {
        "success": True,
        "message": "Order cancelled successfully",
        "data": order.to_response(),
    }

@router.patch("/{order_id}/complete")
async def complete_order(
    order_id: ResourceId,
    request: Request,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    order = await service.complete_order(order_id)

    await log_activity(request.app.state.db, current_user, "complete", "order", order_id, None, request)

    return {
        "success": True,
        "message": "Order completed and table cleared",
        "data": order.to_response(),
    }
