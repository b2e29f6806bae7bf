"""
In-memory ruleset cache.

Stores a role's normalized (pre-interpolation) rules keyed by
(role_id, ruleset_version). A version bump makes older entries unreachable;
evict_role drops them eagerly after commit.
WARNING: This is single-instance only and data is lost on restart.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from loguru import logger

from security.policy.abac import RawRule

CacheKey = Tuple[str, int]


class AbilityCache:
    """Role ruleset cache with TTL expiry"""

    def __init__(self, ttl: Optional[int] = None):
        """Initialize in-memory storage (ttl in seconds, 0 disables caching)"""
        if ttl is None:
            from auth.config import get_config
            ttl = get_config().ability_cache_ttl
        self.ttl = ttl
        self.entries: Dict[CacheKey, Tuple[List[RawRule], datetime]] = {}
        self.hits = 0
        self.misses = 0
        self.lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    def _is_expired(self, expiry_time: datetime) -> bool:
        return datetime.utcnow() > expiry_time

    def _cleanup_expired(self):
        """Drop expired entries (called with the lock held)"""
        now = datetime.utcnow()
        self.entries = {k: v for k, v in self.entries.items() if v[1] > now}

    # ==================== RULESETS ====================

    def get_rules(self, role_id: str, ruleset_version: int) -> Optional[List[RawRule]]:
        """Get cached rules for a role at a given version"""
        if not self.enabled:
            return None

        with self.lock:
            key = (role_id, ruleset_version)
            if key in self.entries:
                rules, expiry = self.entries[key]
                if not self._is_expired(expiry):
                    self.hits += 1
                    return list(rules)
                del self.entries[key]
            self.misses += 1
            return None

    def store_rules(self, role_id: str, ruleset_version: int, rules: List[RawRule]):
        """Cache rules for a role, replacing older versions of the same role"""
        if not self.enabled:
            return

        with self.lock:
            self._cleanup_expired()
            for key in [k for k in self.entries if k[0] == role_id]:
                del self.entries[key]

            expiry = datetime.utcnow() + timedelta(seconds=self.ttl)
            self.entries[(role_id, ruleset_version)] = (list(rules), expiry)
            logger.debug(f"[CACHE] Stored {len(rules)} rule(s) for role {role_id} v{ruleset_version}")

    def evict_role(self, role_id: str):
        """Invalidate every cached version of a role"""
        with self.lock:
            keys = [k for k in self.entries if k[0] == role_id]
            for key in keys:
                del self.entries[key]
        if keys:
            logger.debug(f"[CACHE] Evicted role {role_id}")

    def clear(self):
        with self.lock:
            self.entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> Dict[str, int]:
        with self.lock:
            return {"entries": len(self.entries), "hits": self.hits, "misses": self.misses}


# Global instance
ability_cache = AbilityCache()
