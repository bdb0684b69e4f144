"""
Lazy stage caching.

Each loading stage of a dataset (metadata, cells, features, counts) is held in
a ``StageCache``. The first caller runs the loader; concurrent callers await
the same in-flight task, so a stage is fetched at most once until ``reset()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StageCache(Generic[T]):
    """
    Memoized async value with single-flight loading.

    Example:
        >>> stage = StageCache("cells")
        >>> cells = await stage.get(fetch_cells)   # runs fetch_cells
        >>> cells = await stage.get(fetch_cells)   # cached, no fetch
        >>> stage.reset()                          # next get() fetches again
    """

    def __init__(self, name: str):
        """
        Initialize an empty stage.

        Args:
            name: Stage name, used in log messages.
        """
        self.name = name
        self._value: Optional[T] = None
        self._loaded = False
        self._task: Optional[asyncio.Future] = None
        self._generation = 0

    @property
    def loaded(self) -> bool:
        """Whether a value is cached."""
        return self._loaded

    def peek(self) -> Optional[T]:
        """Return the cached value without loading, or None."""
        return self._value if self._loaded else None

    async def get(self, loader: Callable[[], Awaitable[T]]) -> T:
        """
        Return the cached value, running ``loader`` if nothing is cached.

        Args:
            loader: Zero-argument coroutine function producing the value.

        Returns:
            The stage value.
        """
        if self._loaded:
            return self._value

        if self._task is None:
            logger.debug("Loading stage '%s'", self.name)
            self._task = asyncio.ensure_future(self._run(loader, self._generation))

        # Cancelling one waiter must not cancel the load shared with the others.
        return await asyncio.shield(self._task)

    async def _run(self, loader: Callable[[], Awaitable[T]], generation: int) -> T:
        try:
            value = await loader()
        finally:
            if generation == self._generation:
                self._task = None

        # A reset() during the fetch discards the stale result.
        if generation == self._generation:
            self._value = value
            self._loaded = True
        return value

    def reset(self) -> Optional[T]:
        """
        Drop the cached value.

        Returns:
            The previously cached value (or None), so callers can release it.
        """
        previous = self._value if self._loaded else None
        self._value = None
        self._loaded = False
        self._task = None
        self._generation += 1
        return previous
