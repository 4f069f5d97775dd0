from typing import Any, Dict, List, Optional, Tuple
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
import logging

from ..core.cache import CacheKeys, invalidate_payment_cache
from ..core.errors import ValidationFailed, NotFound, Conflict, PaymentGatewayError
from ..models.order import PAYABLE_STATUSES, ZERO, to_money
from ..models.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    ACTIVE_PAYMENT_STATUSES,
    IMMEDIATE_METHODS,
)
from ..services.khalti import KhaltiService, map_khalti_status
from ..services.redis import RedisClient
from ..services.stores import PaymentStore, StaffDirectory
from ..utils.time import utc_now, local_day_bounds, parse_timestamp, RESTAURANT_TZ
from .order_service import OrderService

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal("0.01")


class PaymentService:
    def __init__(
        self,
        payments: PaymentStore,
        order_service: OrderService,
        staff: StaffDirectory,
        khalti: Optional[KhaltiService] = None,
        cache: Optional[RedisClient] = None,
        clock=utc_now,
    ):
        self.payments = payments
        self.order_service = order_service
        self.staff = staff
        self.khalti = khalti
        self.cache = cache
        self.clock = clock

    async def _check_staff(self, handled_by: Optional[str]):
        if handled_by and await self.staff.get(handled_by) is None:
            raise ValidationFailed("Invalid staff ID")

    async def get_payment(self, payment_id: str) -> Payment:
        payment = await self.payments.get(payment_id)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    async def process_payment(
        self,
        order_id: str,
        method: PaymentMethod,
        amount: Decimal,
        transaction_id: Optional[str] = None,
        handled_by: Optional[str] = None,
    ) -> Tuple[Payment, Dict[str, Any]]:
        """Record a payment for an order; returns the payment and gateway extras (Khalti payment_url)"""
        order = await self.order_service.get_order(order_id)

        if order.status not in PAYABLE_STATUSES:
            raise ValidationFailed(f"Cannot process payment for {order.status.value.lower()} order")

        existing = await self.payments.find_for_order(order_id, ACTIVE_PAYMENT_STATUSES)
        if existing:
            raise Conflict("Payment already exists for this order", data=existing[0].to_response())

        amount = to_money(amount)
        if abs(amount - order.final_amount) > AMOUNT_TOLERANCE:
            raise ValidationFailed(
                f"Payment amount ({amount}) does not match order total ({order.final_amount})"
            )

        await self._check_staff(handled_by)

        if method == PaymentMethod.KHALTI and self.khalti is None:
            raise PaymentGatewayError("Khalti is not configured")

        payment = await self.payments.insert(Payment(
            order_id=order_id,
            table_id=order.table_id,
            amount=amount,
            payment_method=method,
            payment_status=PaymentStatus.PAID if method in IMMEDIATE_METHODS else PaymentStatus.PENDING,
            handled_by=handled_by,
            transaction_id=(transaction_id or "").strip() or None,
            payment_time=self.clock(),
        ))

        extras: Dict[str, Any] = {}
        if payment.payment_status == PaymentStatus.PAID:
            await self.order_service.mark_paid(order_id)
        elif method == PaymentMethod.KHALTI:
            try:
                gateway = await self.khalti.initiate(
                    amount, order_id, f"{order.customer_name} - order {order_id}"
                )
            except PaymentGatewayError:
                await self.payments.update_fields(payment.id, payment_status=PaymentStatus.FAILED)
                raise
            payment = await self.payments.update_fields(payment.id, khalti_pidx=gateway["pidx"]) or payment
            extras = {
                "pidx": gateway["pidx"],
                "paymentUrl": gateway.get("payment_url"),
                "expiresAt": gateway.get("expires_at"),
            }

        invalidate_payment_cache(self.cache)
        logger.info("Payment processed for order %s, method: %s, amount: %s", order_id, method.value, amount)
        return payment, extras

    async def update_payment_status(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        transaction_id: Optional[str] = None,
        handled_by: Optional[str] = None,
    ) -> Payment:
        await self._check_staff(handled_by)
        payment = await self.get_payment(payment_id)

        changes: Dict[str, Any] = {"payment_status": new_status, "payment_time": self.clock()}
        if transaction_id is not None:
            changes["transaction_id"] = transaction_id.strip() or None
        if handled_by:
            changes["handled_by"] = handled_by

        updated = await self.payments.update_fields(payment_id, **changes) or payment

        if new_status == PaymentStatus.PAID:
            await self.order_service.mark_paid(payment.order_id)
        elif new_status == PaymentStatus.FAILED:
            # Assumes the order had been served before payment was attempted
            await self.order_service.revert_to_served(payment.order_id)

        invalidate_payment_cache(self.cache)
        logger.info("Payment %s status updated to %s", payment_id, new_status.value)
        return updated

    async def process_refund(
        self,
        payment_id: str,
        refund_amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
        handled_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        payment = await self.get_payment(payment_id)
        if payment.payment_status != PaymentStatus.PAID:
            raise ValidationFailed("Can only refund paid payments")

        amount = to_money(refund_amount) if refund_amount is not None else payment.amount
        if amount <= ZERO or amount > payment.amount:
            raise ValidationFailed("Invalid refund amount")

        await self._check_staff(handled_by)

        refund = await self.payments.insert(Payment(
            order_id=payment.order_id,
            table_id=payment.table_id,
            amount=-amount,
            payment_method=payment.payment_method,
            payment_status=PaymentStatus.REFUNDED,
            handled_by=handled_by,
            transaction_id=f"REFUND-{payment.id}",
            payment_time=self.clock(),
        ))

        if amount == payment.amount:
            payment = await self.payments.update_fields(
                payment.id, payment_status=PaymentStatus.REFUNDED
            ) or payment

        invalidate_payment_cache(self.cache)
        logger.info("Refund of %s recorded against payment %s", amount, payment_id)
        return {
            "refund": refund.to_response(),
            "originalPayment": payment.to_response(),
            "refundAmount": float(amount),
            "reason": reason or "No reason provided",
        }

    # ------------------------------------------------------------------
    # Khalti
    # ------------------------------------------------------------------

    async def verify_khalti(self, pidx: str) -> Dict[str, Any]:
        """Look the payment up at the gateway and apply the mapped status"""
        if self.khalti is None:
            raise PaymentGatewayError("Khalti is not configured")

        matches = await self.payments.find(eq={"khalti_pidx": pidx})
        if not matches:
            raise NotFound("Payment not found for this pidx")
        payment = matches[0]

        gateway = await self.khalti.lookup(pidx)
        mapped = map_khalti_status(gateway.get("status"))

        if payment.payment_status == PaymentStatus.PENDING and mapped != PaymentStatus.PENDING:
            payment = await self.update_payment_status(
                payment.id, mapped, transaction_id=gateway.get("transaction_id")
            )

        return {
            "payment": payment.to_response(),
            "gatewayStatus": gateway.get("status"),
        }

    async def poll_pending_khalti(self) -> int:
        """Verify every Pending Khalti payment; returns how many were settled"""
        if self.khalti is None:
            return 0

        pending = await self.payments.find(eq={
            "payment_method": PaymentMethod.KHALTI.value,
            "payment_status": PaymentStatus.PENDING.value,
        })
        settled = 0
        for payment in pending:
            if not payment.khalti_pidx:
                continue
            try:
                result = await self.verify_khalti(payment.khalti_pidx)
            except Exception:
                logger.exception("Khalti verification failed for payment %s", payment.id)
                continue
            if result["payment"]["paymentStatus"] != PaymentStatus.PENDING.value:
                settled += 1
        return settled

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    async def payments_for_order(self, order_id: str) -> List[Payment]:
        payments = await self.payments.find_for_order(order_id)
        if not payments:
            raise NotFound("Payment not found for this order")
        return payments

    async def list_payments(
        self,
        page: int = 1,
        limit: int = 20,
        payment_status: Optional[PaymentStatus] = None,
        payment_method: Optional[PaymentMethod] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Tuple[List[Payment], int]:
        eq: Dict[str, Any] = {}
        if payment_status:
            eq["payment_status"] = payment_status.value
        if payment_method:
            eq["payment_method"] = payment_method.value
        gte = {"payment_time": start_date} if start_date else {}
        lte = {"payment_time": end_date} if end_date else {}

        return await self.payments.page(
            eq, gte, lte, order_by="payment_time", desc=True, limit=limit, offset=(page - 1) * limit
        )

    async def daily_sales_report(self, day: Optional[date] = None) -> Dict[str, Any]:
        start, end = local_day_bounds(day)
        day = day or start.astimezone(RESTAURANT_TZ).date()

        cache_key = CacheKeys.DAILY_SALES.format(date=day.isoformat())
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if isinstance(cached, dict):
                return cached

        paid = await self.payments.find(
            eq={"payment_status": PaymentStatus.PAID.value},
            gte={"payment_time": start},
            lte={"payment_time": end},
            order_by="payment_time",
        )

        total = sum((p.amount for p in paid), ZERO)
        methods: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"total": ZERO, "count": 0})
        hours: Dict[int, Dict[str, Any]] = defaultdict(lambda: {"total": ZERO, "count": 0})

        for payment in paid:
            methods[payment.payment_method.value]["total"] += payment.amount
            methods[payment.payment_method.value]["count"] += 1
            paid_at = parse_timestamp(payment.payment_time)
            if paid_at:
                hour = paid_at.astimezone(RESTAURANT_TZ).hour
                hours[hour]["total"] += payment.amount
                hours[hour]["count"] += 1

        report = {
            "date": day.isoformat(),
            "summary": {
                "totalSales": float(total),
                "totalTransactions": len(paid),
                "averageTransaction": float(to_money(total / len(paid))) if paid else 0,
            },
            "paymentMethods": [
                {"method": method, "total": float(v["total"]), "count": v["count"]}
                for method, v in sorted(methods.items())
            ],
            "hourlyBreakdown": [
                {"hour": hour, "total": float(v["total"]), "count": v["count"]}
                for hour, v in sorted(hours.items())
            ],
            "transactions": [p.to_response() for p in paid],
        }

        if self.cache is not None:
            self.cache.set(cache_key, report, 60)
        return report
