"""
Order timeout scheduler

Keeps at most one pending auto-cancel task per order id. Timers live only in
this process; the deadline itself is persisted on the order (order_timeout),
so restore_on_startup() can rebuild the schedule after a restart.

Single-process only: running several API workers would arm the same order
once per worker. Each fire re-reads the order first, so the duplicates are
no-ops, but the registry is not shared.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from ..config import settings
from ..models.order import KITCHEN_STATUSES
from ..utils.time import utc_now
from .stores import OrderStore

logger = logging.getLogger(__name__)

TimeoutHandler = Callable[[str], Awaitable[None]]


class OrderTimeoutScheduler:
    def __init__(
        self,
        handler: Optional[TimeoutHandler] = None,
        default_minutes: float = settings.ORDER_TIMEOUT_MINUTES,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._handler = handler
        self.default_minutes = default_minutes
        self._clock = clock
        self._sleep = sleep
        self._timers: Dict[str, asyncio.Task] = {}

    def bind(self, handler: TimeoutHandler):
        self._handler = handler

    def arm(self, order_id: str, minutes: Optional[float] = None):
        """Schedule the auto-cancel, replacing any timer already set for this order"""
        self.disarm(order_id, quiet=True)
        minutes = self.default_minutes if minutes is None else minutes
        self._timers[order_id] = asyncio.create_task(self._wait_and_fire(order_id, minutes * 60))
        logger.info("Timeout set for order %s - %.1f minutes", order_id, minutes)

    def disarm(self, order_id: str, quiet: bool = False):
        task = self._timers.pop(order_id, None)
        if task is None:
            return
        if task is not asyncio.current_task():
            task.cancel()
        if not quiet:
            logger.info("Timeout cleared for order %s", order_id)

    def is_armed(self, order_id: str) -> bool:
        return order_id in self._timers

    def active_timeouts(self) -> List[str]:
        return list(self._timers.keys())

    async def _wait_and_fire(self, order_id: str, delay_seconds: float):
        await self._sleep(delay_seconds)
        if self._timers.get(order_id) is asyncio.current_task():
            del self._timers[order_id]
        await self.fire(order_id)

    async def fire(self, order_id: str):
        """Run the timeout handler; errors are logged, there is no caller to report to"""
        if self._handler is None:
            logger.warning("Timeout fired for order %s with no handler bound", order_id)
            return
        try:
            await self._handler(order_id)
        except Exception:
            logger.exception("Error handling timeout for order %s", order_id)

    async def restore_on_startup(self, orders: OrderStore) -> Dict[str, int]:
        """Re-arm live deadlines and fire overdue ones before serving traffic"""
        pending = await orders.find_by_statuses(KITCHEN_STATUSES, is_timed_out=False)
        now = self._clock()
        restored = expired = 0

        for order in pending:
            deadline = order.order_timeout
            if deadline is None and order.created_at is not None:
                deadline = order.created_at + timedelta(minutes=self.default_minutes)
            if deadline is not None and deadline > now:
                self.arm(order.id, (deadline - now).total_seconds() / 60)
                restored += 1
            else:
                await self.fire(order.id)
                expired += 1

        logger.info("Restored %d order timeouts, expired %d overdue orders", restored, expired)
        return {"restored": restored, "expired": expired}

    def shutdown(self):
        """Cancel every pending timer without firing it"""
        logger.info("Cleaning up %d order timeouts", len(self._timers))
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
