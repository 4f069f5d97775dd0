import json
import logging
from typing import Optional, Any

import redis

from ..config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """JSON cache on top of redis; connection problems degrade to cache misses"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client or redis.from_url(settings.REDIS_URL, decode_responses=True)

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self.client.get(key)
        except redis.RedisError as e:
            logger.warning("Redis get failed for %s: %s", key, e)
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except ValueError:
            return value

    def set(self, key: str, value: Any, expire: Optional[int] = None):
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        try:
            if expire:
                self.client.setex(key, expire, value)
            else:
                self.client.set(key, value)
        except redis.RedisError as e:
            logger.warning("Redis set failed for %s: %s", key, e)

    def delete(self, *keys: str):
        if not keys:
            return
        try:
            self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Redis delete failed: %s", e)

    def delete_pattern(self, pattern: str):
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Redis delete_pattern failed for %s: %s", pattern, e)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    def close(self):
        try:
            self.client.close()
        except redis.RedisError:
            pass

redis_client = RedisClient()
