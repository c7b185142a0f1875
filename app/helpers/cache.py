import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TypeVar

T = TypeVar("T")


def loop_acache(func: Callable[[], Awaitable[T]]) -> Callable[[], Awaitable[T]]:
    """
    Caches the value of an async factory, once per event loop.

    Sessions and connectors are bound to the loop they were created in, so each loop gets its own value. A failed creation is not cached.

    Use `cache_clear` on the decorated function to forget all values, without closing them.
    """
    values: dict[int, T] = {}

    @wraps(func)
    async def wrapper() -> T:
        key = id(asyncio.get_running_loop())
        if key not in values:
            values[key] = await func()
        return values[key]

    wrapper.cache_clear = values.clear  # pyright: ignore
    return wrapper
