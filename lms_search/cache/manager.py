"""
Redis Cache Manager for LMS search
Handles suggestion caching, popular searches, realtime counters and indexing locks
"""
import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Optional, List, Dict
import redis
from .config import CacheConfig

logger = logging.getLogger(__name__)


class CacheManager:
    """Redis-based cache manager with TTL and invalidation logic"""

    # Fallback locks when Redis is not configured, shared by all managers in the process
    _local_locks: Dict[str, threading.Lock] = {}
    _local_locks_guard = threading.Lock()

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        """Initialize cache manager with Redis client"""
        self.redis_client = redis_client
        self.config = CacheConfig()
        self.enabled = redis_client is not None

        if not self.enabled:
            logger.warning("Cache manager initialized without Redis client - caching disabled")

    def _generate_key(self, key_type: str, identifier: str) -> str:
        """Generate cache key with proper prefix"""
        prefix = self.config.get_key_prefix(key_type)
        return f"{prefix}{identifier}"

    def _serialize_data(self, data: Any) -> str:
        if isinstance(data, (dict, list)):
            return json.dumps(data, default=str)
        return str(data)

    def _deserialize_data(self, data: str) -> Any:
        try:
            return json.loads(data)
        except (json.JSONDecodeError, TypeError):
            return data

    def set(self, key_type: str, identifier: str, data: Any, ttl: Optional[int] = None) -> bool:
        """Set cache value with TTL"""
        if not self.enabled:
            return False

        try:
            cache_key = self._generate_key(key_type, identifier)
            if ttl is None:
                ttl = self.config.get_ttl_for_key_type(key_type)

            result = self.redis_client.setex(cache_key, ttl, self._serialize_data(data))
            logger.debug(f"Cache SET: {cache_key} (TTL: {ttl}s)")
            return bool(result)
        except Exception as e:
            logger.error(f"Cache SET error for {key_type}:{identifier}: {e}")
            return False

    def get(self, key_type: str, identifier: str) -> Optional[Any]:
        """Get cache value"""
        if not self.enabled:
            return None

        try:
            cache_key = self._generate_key(key_type, identifier)
            data = self.redis_client.get(cache_key)

            if data is None:
                logger.debug(f"Cache MISS: {cache_key}")
                return None

            logger.debug(f"Cache HIT: {cache_key}")
            return self._deserialize_data(data)
        except Exception as e:
            logger.error(f"Cache GET error for {key_type}:{identifier}: {e}")
            return None

    def delete(self, key_type: str, identifier: str) -> bool:
        if not self.enabled:
            return False

        try:
            cache_key = self._generate_key(key_type, identifier)
            result = self.redis_client.delete(cache_key)
            logger.debug(f"Cache DELETE: {cache_key}")
            return bool(result)
        except Exception as e:
            logger.error(f"Cache DELETE error for {key_type}:{identifier}: {e}")
            return False

    def invalidate_pattern(self, pattern: str) -> int:
        """Invalidate all keys matching pattern"""
        if not self.enabled:
            return 0

        try:
            keys = list(self.redis_client.scan_iter(match=pattern))
            if keys:
                deleted = self.redis_client.delete(*keys)
                logger.info(f"Cache INVALIDATE: {len(keys)} keys matching '{pattern}'")
                return deleted
            return 0
        except Exception as e:
            logger.error(f"Cache INVALIDATE error for pattern '{pattern}': {e}")
            return 0

    # Autocomplete suggestions
    def cache_suggestions(self, organization_id: str, prefix: str, suggestions: List[Dict[str, Any]],
                          ttl: Optional[int] = None) -> bool:
        """Cache autocomplete suggestions for an organization and prefix"""
        identifier = f"{organization_id}:{prefix.lower()}"
        return self.set("suggestions", identifier, suggestions, ttl)

    def get_cached_suggestions(self, organization_id: str, prefix: str) -> Optional[List[Dict[str, Any]]]:
        return self.get("suggestions", f"{organization_id}:{prefix.lower()}")

    def invalidate_suggestions(self, organization_id: str) -> int:
        pattern = f"{self.config.SUGGESTIONS_PREFIX}{organization_id}:*"
        return self.invalidate_pattern(pattern)

    # Personalization profiles
    def cache_profile(self, user_id: str, profile: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        return self.set("personalization", user_id, profile, ttl)

    def get_cached_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.get("personalization", user_id)

    def invalidate_profile(self, user_id: str) -> bool:
        return self.delete("personalization", user_id)

    # Analytics
    def cache_analytics_data(self, metric_key: str, data: Any, ttl: Optional[int] = None) -> bool:
        return self.set("analytics", metric_key, data, ttl)

    def get_cached_analytics_data(self, metric_key: str) -> Optional[Any]:
        return self.get("analytics", metric_key)

    # Popular searches
    def add_popular_search(self, organization_id: str, query: str) -> bool:
        """Add to popular searches with score increment"""
        if not self.enabled or not query:
            return False

        try:
            key = self._generate_key("popular_searches", organization_id)
            self.redis_client.zincrby(key, 1, query)
            return True
        except Exception as e:
            logger.error(f"Error adding popular search '{query}': {e}")
            return False

    def get_popular_searches(self, organization_id: str, limit: int = 10) -> List[str]:
        """Get most popular searches"""
        if not self.enabled:
            return []

        try:
            key = self._generate_key("popular_searches", organization_id)
            return self.redis_client.zrevrange(key, 0, limit - 1)
        except Exception as e:
            logger.error(f"Error getting popular searches: {e}")
            return []

    # Realtime counters
    def increment_counter(self, name: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """Increment a realtime counter, returning the new value (0 when disabled)"""
        if not self.enabled:
            return 0

        try:
            key = self._generate_key("counter", name)
            value = self.redis_client.incrby(key, amount)
            self.redis_client.expire(key, ttl or self.config.COUNTER_TTL)
            return value
        except Exception as e:
            logger.error(f"Error incrementing counter {name}: {e}")
            return 0

    def get_counter(self, name: str) -> int:
        if not self.enabled:
            return 0

        try:
            value = self.redis_client.get(self._generate_key("counter", name))
            return int(value) if value is not None else 0
        except Exception as e:
            logger.error(f"Error reading counter {name}: {e}")
            return 0

    # Locks
    @contextmanager
    def lock(self, name: str, timeout: Optional[int] = None, blocking_timeout: Optional[int] = None):
        """
        Hold an exclusive lock for the duration of the block

        Uses a Redis lock when Redis is configured so the lock holds across workers,
        otherwise a process-local lock. Failure to acquire raises.
        """
        key = self._generate_key("lock", name)
        timeout = timeout or self.config.LOCK_TIMEOUT
        blocking_timeout = blocking_timeout or self.config.LOCK_BLOCKING_TIMEOUT

        if self.enabled:
            with self.redis_client.lock(key, timeout=timeout, blocking_timeout=blocking_timeout):
                logger.debug(f"Lock acquired: {key}")
                yield
            return

        with self._local_locks_guard:
            local_lock = self._local_locks.setdefault(key, threading.Lock())

        if not local_lock.acquire(timeout=blocking_timeout):
            raise TimeoutError(f"Could not acquire lock {key} within {blocking_timeout}s")
        try:
            logger.debug(f"Local lock acquired: {key}")
            yield
        finally:
            local_lock.release()

    # Health and monitoring
    def health_check(self) -> Dict[str, Any]:
        """Check cache health and return status"""
        if not self.enabled:
            return {"status": "disabled", "redis_available": False}

        try:
            test_key = "health_check_test"
            self.redis_client.setex(test_key, 10, "test")
            result = self.redis_client.get(test_key)
            self.redis_client.delete(test_key)

            info = self.redis_client.info()

            return {
                "status": "healthy" if result == "test" else "error",
                "redis_available": True,
                "connected_clients": info.get("connected_clients", 0),
                "used_memory_human": info.get("used_memory_human", "unknown"),
            }
        except Exception as e:
            logger.error(f"Cache health check failed: {e}")
            return {
                "status": "error",
                "redis_available": False,
                "error": str(e)
            }
