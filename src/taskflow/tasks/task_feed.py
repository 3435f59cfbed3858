# src/taskflow/tasks/task_feed.py

"""
Change feed.

The store publishes one event per committed write. Each subscriber holds a
single "changed" flag (an asyncio.Event), so publishing is a non-blocking set,
a slow consumer never holds up the writer, and any number of commits between
two reads collapse into one pending reload. A subscription replays the current
result set first, then recomputes its query whenever the flag is set.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChangeFeed:
    """Observer registry for committed store mutations."""

    def __init__(self) -> None:
        self._subscribers: set[Subscription[object]] = set()
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def register(self, sub: Subscription[object]) -> None:
        self._subscribers.add(sub)

    def unregister(self, sub: Subscription[object]) -> None:
        self._subscribers.discard(sub)

    def publish(self) -> int:
        self._version += 1
        for sub in list(self._subscribers):
            sub.mark_changed()
        logger.debug("Change published version=%s subscribers=%s", self._version, len(self._subscribers))
        return self._version

    def close(self) -> None:
        """End every subscription; waiting iterators stop."""
        for sub in list(self._subscribers):
            sub.end()
        self._subscribers.clear()


class Subscription(Generic[T]):
    """
    Async iterator over query snapshots.

    - first __anext__ returns the current snapshot immediately
    - every later __anext__ waits until at least one commit happened since the
      previous snapshot and returns a fresh one
    - iteration ends when close() is called or the feed is closed
    """

    def __init__(self, feed: ChangeFeed, load: Callable[[], Awaitable[T]]) -> None:
        self._feed = feed
        self._load = load
        self._changed = asyncio.Event()
        self._primed = False
        self._ended = False
        # Register before the first load so no commit can slip between them.
        feed.register(self)

    @property
    def closed(self) -> bool:
        return self._ended

    def mark_changed(self) -> None:
        self._changed.set()

    def end(self) -> None:
        self._ended = True
        self._changed.set()

    def close(self) -> None:
        if self._ended:
            return
        self._feed.unregister(self)
        self.end()

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        if self._ended:
            raise StopAsyncIteration
        if not self._primed:
            self._primed = True
            return await self._load()

        await self._changed.wait()
        if self._ended:
            raise StopAsyncIteration
        # Clear before loading: a commit during the load sets the flag again.
        self._changed.clear()
        return await self._load()

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()
