from fastapi import APIRouter, Depends, Request, Query, status
from typing import Optional
from datetime import date, datetime

from ..models.payment import PaymentMethod, PaymentStatus
from ..core.permissions import require_staff, require_finance_staff
from ..core.activity_logger import log_activity
from ..utils.pagination import build_pagination_metadata, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .payment_service import PaymentService
from .schemas import PaymentCreate, PaymentStatusUpdate, RefundCreate, KhaltiVerify, ResourceId

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payments


def _str(value) -> Optional[str]:
    return str(value) if value else None


@router.post("/", status_code=status.HTTP_201_CREATED)
async def process_payment(
    payload: PaymentCreate,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    current_user: dict = Depends(require_staff),
):
    payment, gateway = await service.process_payment(
        order_id=str(payload.order_id),
        method=payload.payment_method,
        amount=payload.amount,
        transaction_id=payload.transaction_id,
        handled_by=_str(payload.handled_by),
    )

    await log_activity(
        request.app.state.db, current_user, "process", "payment", payment.id,
        {"order_id": payment.order_id, "method": payment.payment_method.value, "amount": float(payment.amount)},
        request,
    )

    data = payment.to_response()
    if gateway:
        data["gateway"] = gateway
    return {"success": True, "message": "Payment processed successfully", "data": data}

@router.post("/khalti/verify")
async def verify_khalti_payment(
    payload: KhaltiVerify,
    service: PaymentService = Depends(get_payment_service),
):
    """Called from the Khalti return page; the lookup result decides the status"""
    return {
        "success": True,
        "message": "Khalti payment verified",
        "data": await service.verify_khalti(payload.pidx),
    }

@router.get("/")
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    payment_method: Optional[PaymentMethod] = Query(None, alias="paymentMethod"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    service: PaymentService = Depends(get_payment_service),
    current_user: dict = Depends(require_staff),
):
    payments, total = await service.list_payments(
        page=page,
        limit=limit,
        payment_status=payment_status,
        payment_method=payment_method,
        start_date=start_date,
        end_date=end_date,
    )
    return {
        "success": True,
        "message": "Payments retrieved successfully",
        "data": [p.to_response() for p in payments],
        "pagination": build_pagination_metadata(page, limit, total),
    }

@router.get("/reports/daily")
async def daily_sales_report(
    day: Optional[date] = Query(None, alias="date"),
    service: PaymentService = Depends(get_payment_service),
    current_user: dict = Depends(require_finance_staff),
):
    return {
        "success": True,
        "message": "Daily sales report generated successfully",
        "data": await service.daily_sales_report(day),
    }

@router.get("/order/{order_id}")
async def get_payments_for_order(
    order_id: ResourceId,
    service: PaymentService = Depends(get_payment_service),
    current_user: dict = Depends(require_staff),
):
    payments = await service.payments_for_order(order_id)
    return {
        "success": True,
        "message": "Payment retrieved successfully",
        "data": [p.to_response() for p in payments],
    }

@router.get("/{payment_id}")
async def get_payment(
    payment_id: ResourceId,
    service: PaymentService = Depends(get_payment_service),
    current_user: dict = Depends(require_staff),
):
    payment = await service.get_payment(payment_id)
    return {"success": True, "message": "Payment retrieved successfully", "data": payment.to_response()}

@router.patch("/{payment_id}/status")
async def update_payment_status(
    payment_id: ResourceId,
    payload: PaymentStatusUpdate,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    current_user: dict = Depends(require_staff),
):
    payment = await service.update_payment_status(
        payment_id,
        payload.payment_status,
        transaction_id=payload.transaction_id,
        handled_by=_str(payload.handled_by),
    )

    await log_activity(
        request.app.state.db, current_user, "update_status", "payment", payment_id,
        {"status": payload.payment_status.value}, request,
    )

    return {"success": True, "message": "Payment status updated successfully", "data": payment.to_response()}

@router.post("/{payment_id}/refund", status_code=status.HTTP_201_CREATED)
async def process_refund(
    payment_id: ResourceId,
    request: Request,
    payload: Optional[RefundCreate] = None,
    service: PaymentService = Depends(get_payment_service),
    current_user: dict = Depends(require_finance_staff),
):
    payload = payload or RefundCreate()
    data = await service.process_refund(
        payment_id,
        refund_amount=payload.refund_amount,
        reason=payload.reason,
        handled_by=_str(payload.handled_by),
    )

    await log_activity(
        request.app.state.db, current_user, "refund", "payment", payment_id,
        {"amount": data["refundAmount"], "reason": data["reason"]}, request,
    )

    return {"success": True, "message": "Refund processed successfully", "data": data}
