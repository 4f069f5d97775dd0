from fastapi import APIRouter, Depends, Request, Query
from typing import Optional

from ..models.order import TABLE_RELEASE_STATUSES
from ..models.table import Table, TableStatus
from ..core.errors import NotFound, ValidationFailed
from ..core.permissions import require_staff, require_admin
from ..core.activity_logger import log_activity
from ..utils.pagination import build_pagination_metadata, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .order_service import OrderService
from .orders import get_order_service
from .schemas import TableStatusUpdate, TableWaiterAssign, ResourceId

router = APIRouter(prefix="/tables", tags=["Tables"])


async def _get_table(service: OrderService, table_id: str) -> Table:
    table = await service.tables.get(table_id)
    if table is None:
        raise NotFound("Table not found")
    return table

async def _current_order_status(service: OrderService, table: Table) -> Optional[str]:
    if not table.current_order:
        return None
    order = await service.orders.get(table.current_order)
    return order.status.value if order else None


@router.get("/public/{table_id}")
async def get_public_table(
    table_id: ResourceId,
    service: OrderService = Depends(get_order_service),
):
    """Table lookup for customers arriving through the QR code"""
    table = await _get_table(service, table_id)
    return {
        "success": True,
        "message": "Table retrieved successfully",
        "data": {
            "id": table.id,
            "tableNumber": table.table_number,
            "capacity": table.capacity,
            "status": table.status.value,
        },
    }

@router.get("/")
async def list_tables(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[TableStatus] = None,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    """Floor view: tables by number, with occupancy counts across the floor"""
    eq = {"status": status.value} if status else {}
    tables, total = await service.tables.page(eq, limit=limit, offset=(page - 1) * limit)
    return {
        "success": True,
        "message": "Tables retrieved successfully",
        "data": [t.to_response() for t in tables],
        "pagination": build_pagination_metadata(page, limit, total),
        "stats": await service.tables.floor_summary(),
    }

@router.get("/{table_id}/availability")
async def check_table_availability(
    table_id: ResourceId,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    table = await _get_table(service, table_id)
    order_status = await _current_order_status(service, table)
    resolved = [s.value for s in TABLE_RELEASE_STATUSES]
    is_available = table.status == TableStatus.AVAILABLE or (order_status is not None and order_status in resolved)

    return {
        "success": True,
        "message": "Table availability checked",
        "data": {
            "tableId": table.id,
            "tableNumber": table.table_number,
            "isAvailable": is_available,
            "status": table.status.value,
            "currentOrder": table.current_order,
            "currentOrderStatus": order_status,
        },
    }

@router.patch("/{table_id}/status")
async def update_table_status(
    table_id: ResourceId,
    payload: TableStatusUpdate,
    request: Request,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    table = await service.tables.set_status(table_id, payload.status)
    if table is None:
        raise NotFound("Table not found")

    await log_activity(
        request.app.state.db, current_user, "update_status", "table", table_id,
        {"status": payload.status.value}, request,
    )
    return {"success": True, "message": "Table status updated successfully", "data": table.to_response()}

@router.patch("/{table_id}/waiter")
async def assign_table_waiter(
    table_id: ResourceId,
    payload: TableWaiterAssign,
    request: Request,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_admin),
):
    await _get_table(service, table_id)

    waiter_id = str(payload.waiter_id) if payload.waiter_id else None
    if waiter_id:
        waiter = await service.staff.get(waiter_id)
        if waiter is None or not waiter.is_active or not waiter.is_floor_staff:
            raise ValidationFailed("Invalid waiter ID")

    table = await service.tables.assign_waiter(table_id, waiter_id)

    await log_activity(
        request.app.state.db, current_user, "assign_waiter", "table", table_id,
        {"waiter_id": waiter_id}, request,
    )
    return {"success": True, "message": "Waiter assigned successfully", "data": table.to_response()}

@router.patch("/{table_id}/reset")
async def reset_table(
    table_id: ResourceId,
    request: Request,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_staff),
):
    """Free a table whose order has been resolved"""
    table = await _get_table(service, table_id)
    order_status = await _current_order_status(service, table)
    if order_status and order_status not in [s.value for s in TABLE_RELEASE_STATUSES]:
        raise ValidationFailed("Cannot reset table with active order")

    await service.tables.release(table_id)

    await log_activity(request.app.state.db, current_user, "reset", "table", table_id, None, request)
    return {
        "success": True,
        "message": "Table reset for new customers",
        "data": (await _get_table(service, table_id)).to_response(),
    }

@router.patch("/{table_id}/clear")
async def clear_table(
    table_id: ResourceId,
    request: Request,
    service: OrderService = Depends(get_order_service),
    current_user: dict = Depends(require_admin),
):
    await _get_table(service, table_id)
    await service.tables.release(table_id)

    await log_activity(request.app.state.db, current_user, "clear", "table", table_id, None, request)
    return {
        "success": True,
        "message": "Table cleared successfully",
        "data": (await _get_table(service, table_id)).to_response(),
    }
