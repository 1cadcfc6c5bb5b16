from functools import wraps
from typing import Callable, Iterable, Optional


def cached_check(key_builder: Callable[..., str], ttl: Optional[float] = None):
    """
    Decorator for async repository methods. key_builder receives the method's
    args/kwargs (without self); the value is memoized in ``self.cache``.
    Example:
      @cached_check(lambda team_id, user_id: CacheKeys.team_member(team_id, user_id))
      async def is_member(self, team_id, user_id): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            key = key_builder(*args, **kwargs)

            async def loader():
                return await fn(self, *args, **kwargs)

            return await self.cache.get_or_compute(key, loader, ttl)

        return wrapper

    return decorator


def expires_after(
    keys: Optional[Callable[..., Iterable[str]]] = None,
    patterns: Optional[Callable[..., Iterable[str]]] = None,
):
    """
    Invalidate cache entries once the wrapped mutation has returned.

    Nothing is invalidated when the mutation raises, so a failed write never
    drops entries it did not change.
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            result = await fn(self, *args, **kwargs)
            if keys is not None:
                self.cache.invalidate(*keys(*args, **kwargs))
            if patterns is not None:
                for pattern in patterns(*args, **kwargs):
                    self.cache.invalidate_pattern(pattern)
            return result

        return wrapper

    return decorator
