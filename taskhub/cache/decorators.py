from functools import wraps
from typing import Callable

from taskhub.cache.layer import cache_layer


def async_cached(key_builder: Callable[..., str], l2_ttl: int = None):
    """
    Read-through caching for async functions. key_builder receives the same
    args/kwargs as the wrapped function.
    Example:
      @async_cached(lambda task_id, *_, **__: f"task:{task_id}", l2_ttl=120)
      async def get_task(task_id, db): ...

    Pydantic/SQLModel results are cached as their model_dump(); a None result
    is never cached.
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            key = key_builder(*args, **kwargs)

            async def loader():
                value = await fn(*args, **kwargs)
                if value is None:
                    return None
                if hasattr(value, "model_dump"):
                    return value.model_dump(mode="json")
                return value

            return await cache_layer.get(key, loader=loader, l2_ttl=l2_ttl)

        return wrapper

    return decorator


def async_cached_expire(key_builder: Callable[..., str]):
    """Drop the cached entry, then run the wrapped write."""

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            await cache_layer.delete(key_builder(*args, **kwargs))
            return await fn(*args, **kwargs)

        return wrapper

    return decorator
