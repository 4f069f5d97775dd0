from typing import Optional
from ..services.redis import RedisClient

class CacheKeys:
    """Centralized cache key management"""

    # Staff
    TOKEN_USER = "token:{token_hash}"
    USER_PROFILE = "profile:{user_id}"

    # Orders
    KITCHEN_QUEUE = "orders:kitchen:{status}"
    ORDER_DETAIL = "order:{order_id}"

    # Payments
    DAILY_SALES = "payments:daily:{date}"

def invalidate_order_cache(cache: Optional[RedisClient], order_id: Optional[str] = None):
    """Invalidate order-related caches"""
    if cache is None:
        return
    if order_id:
        cache.delete(CacheKeys.ORDER_DETAIL.format(order_id=order_id))
    cache.delete_pattern("orders:kitchen:*")

def invalidate_payment_cache(cache: Optional[RedisClient]):
    if cache is None:
        return
    cache.delete_pattern("payments:daily:*")
