"""
Cache configuration settings
"""
import os


class CacheConfig:
    """Configuration class for cache settings"""

    # Default TTL values (in seconds)
    DEFAULT_TTL = int(os.getenv("CACHE_DEFAULT_TTL", "3600"))  # 1 hour
    SUGGESTIONS_TTL = int(os.getenv("SUGGESTIONS_CACHE_TTL", "300"))  # 5 minutes
    PERSONALIZATION_TTL = int(os.getenv("PERSONALIZATION_CACHE_TTL", "900"))  # 15 minutes
    ANALYTICS_TTL = int(os.getenv("ANALYTICS_TTL", "1800"))  # 30 minutes
    COUNTER_TTL = int(os.getenv("COUNTER_TTL", "86400"))  # 24 hours

    # Locks serializing indexing work per organization and index type
    LOCK_TIMEOUT = int(os.getenv("INDEX_LOCK_TIMEOUT", "3600"))
    LOCK_BLOCKING_TIMEOUT = int(os.getenv("INDEX_LOCK_WAIT", "600"))

    # Cache key prefixes
    SUGGESTIONS_PREFIX = "suggestions:"
    PERSONALIZATION_PREFIX = "personalization:"
    ANALYTICS_PREFIX = "analytics:"
    COUNTER_PREFIX = "counter:"
    LOCK_PREFIX = "lock:"
    POPULAR_SEARCHES_PREFIX = "popular_searches:"

    @classmethod
    def get_ttl_for_key_type(cls, key_type: str) -> int:
        """Get TTL based on key type"""
        ttl_map = {
            "suggestions": cls.SUGGESTIONS_TTL,
            "personalization": cls.PERSONALIZATION_TTL,
            "analytics": cls.ANALYTICS_TTL,
            "counter": cls.COUNTER_TTL,
        }
        return ttl_map.get(key_type, cls.DEFAULT_TTL)

    @classmethod
    def get_key_prefix(cls, key_type: str) -> str:
        """Get key prefix based on type"""
        prefix_map = {
            "suggestions": cls.SUGGESTIONS_PREFIX,
            "personalization": cls.PERSONALIZATION_PREFIX,
            "analytics": cls.ANALYTICS_PREFIX,
            "counter": cls.COUNTER_PREFIX,
            "lock": cls.LOCK_PREFIX,
            "popular_searches": cls.POPULAR_SEARCHES_PREFIX,
        }
        return prefix_map.get(key_type, "")
