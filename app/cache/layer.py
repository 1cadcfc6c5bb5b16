import asyncio
import fnmatch
import logging
import time
from typing import Any, Awaitable, Callable, NamedTuple, Optional

from cachetools import TLRUCache

logger = logging.getLogger(__name__)


class _Entry(NamedTuple):
    value: Any
    ttl: float


class CacheKeys:
    """Key builders shared by readers and invalidators."""

    @staticmethod
    def team_member(team_id: int, user_id: int) -> str:
        return f"team:{team_id}:member:{user_id}"

    @staticmethod
    def team_owner(team_id: int, user_id: int) -> str:
        return f"team:{team_id}:owner:{user_id}"

    @staticmethod
    def team_members(team_id: int) -> str:
        return f"team:{team_id}:members"

    @staticmethod
    def user_teams(user_id: int) -> str:
        return f"user:{user_id}:teams"

    @staticmethod
    def team_namespace(team_id: int) -> str:
        return f"team:{team_id}:*"

    @staticmethod
    def user_namespace(user_id: int) -> list[str]:
        return [f"team:*:*:{user_id}", f"user:{user_id}:*"]


class MembershipCache:
    """
    Short-lived memoization of membership and ownership checks.

    Process-local, one instance per application. Each entry carries its own
    TTL (TLRUCache time-to-use), so lookups self-invalidate on read and the
    periodic sweep only bounds memory.

    Features:
    - get_or_compute with per-call TTL
    - Explicit and glob-pattern invalidation
    - Background sweep of expired entries
    - Injectable clock for tests

    Concurrent misses on the same key may both compute; loaders are cheap
    idempotent reads. A value whose load overlapped an invalidation is
    returned but not stored.
    """

    def __init__(
        self,
        default_ttl: float = 60,
        maxsize: int = 10_000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self._entries: TLRUCache = TLRUCache(
            maxsize=maxsize, ttu=self._expires_at, timer=timer
        )
        # Bumped by every invalidation
        self._generation = 0

        # Stats tracking
        self.stats = {
            "hits": 0,
            "misses": 0,
            "invalidations": 0,
            "sweeps": 0,
        }

    @staticmethod
    def _expires_at(_key: str, entry: _Entry, now: float) -> float:
        return now + entry.ttl

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value for key, or compute and store it.

        Args:
            key: Cache key (see CacheKeys)
            compute: Async loader called on a miss
            ttl: Seconds to keep the value (default_ttl if None)
        """
        entry = self._entries.get(key)
        if entry is not None:
            self.stats["hits"] += 1
            logger.debug(f"Cache HIT: {key}")
            return entry.value

        self.stats["misses"] += 1
        logger.debug(f"Cache MISS: {key}")
        generation = self._generation
        value = await compute()

        if generation == self._generation:
            self._entries[key] = _Entry(value, ttl if ttl is not None else self.default_ttl)
        else:
            logger.debug(f"Cache SKIP: {key} invalidated during load")
        return value

    def invalidate(self, *keys: str) -> None:
        """Delete keys. Missing keys are ignored."""
        self._generation += 1
        for key in keys:
            if self._entries.pop(key, None) is not None:
                self.stats["invalidations"] += 1
                logger.debug(f"Cache DELETE: {key}")

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern (``team:5:*``).

        Returns:
            Number of keys removed
        """
        self._generation += 1
        matched = [k for k in list(self._entries.keys()) if fnmatch.fnmatchcase(k, pattern)]
        for key in matched:
            self._entries.pop(key, None)
        self.stats["invalidations"] += len(matched)
        logger.debug(f"Cache pattern delete '{pattern}': {len(matched)} keys")
        return len(matched)

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        expired = self._entries.expire() or []
        self.stats["sweeps"] += 1
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Sweep forever; run as a background task and cancel on shutdown."""
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def clear(self) -> None:
        self._generation += 1
        size = len(self._entries)
        self._entries.clear()
        logger.info(f"Cache cleared ({size} entries)")

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        """Get cache statistics."""
        lookups = self.stats["hits"] + self.stats["misses"]
        return {
            **self.stats,
            "size": len(self._entries),
            "maxsize": self._entries.maxsize,
            "hit_rate": self.stats["hits"] / lookups if lookups > 0 else 0,
        }
