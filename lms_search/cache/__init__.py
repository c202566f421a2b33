"""
Cache module for LMS search
Redis-backed suggestion cache, popular searches, counters and locks
"""

from .manager import CacheManager
from .config import CacheConfig

__all__ = [
    'CacheManager',
    'CacheConfig'
]
