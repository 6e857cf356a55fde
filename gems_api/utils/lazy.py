# At-most-once initialisation for shared client handles (HTTP pools, Redis).

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar, Union

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class LazyResource(Generic[T]):
    """
    Creates a shared resource on first use.

    Concurrent first callers wait on the same lock, so the factory runs once.
    A failed factory call is not cached; the next caller retries.
    """

    def __init__(self, name: str, factory: Callable[[], Union[T, Awaitable[T]]]):
        self.name = name
        self._factory = factory
        self._value: Optional[T] = None
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._value is not None

    async def get(self) -> T:
        if self._value is not None:
            return self._value
        async with self._lock:
            if self._value is None:
                value = self._factory()
                if asyncio.iscoroutine(value):
                    value = await value
                self._value = value
                logger.info("lazy_resource_initialized", resource=self.name)
        return self._value

    async def aclose(self) -> None:
        async with self._lock:
            value, self._value = self._value, None
        if value is None:
            return
        close = getattr(value, "aclose", None)
        if close is not None:
            await close()
