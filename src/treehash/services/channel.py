"""Closable bounded channels and completion barriers.

The pipeline's stages hand work to each other through BoundedChannel: a
multi-producer/multi-consumer FIFO that blocks producers when full and
consumers when empty, and that can be closed to signal that no more items
will ever arrive. Closed is distinct from empty: consumers keep draining
buffered items after close and only stop once the channel is both closed
and empty.

A capacity of 0 gives a synchronous handoff: put() returns only after a
consumer has taken the item. A capacity of None gives an unbounded queue.
"""

import threading
from collections import deque
from typing import Deque, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised by get() on a closed, drained channel and by put() on a closed channel."""


class BoundedChannel(Generic[T]):
    """Closable FIFO channel with optional bounded capacity."""

    def __init__(self, capacity: Optional[int] = 0, name: str = "channel"):
        """Initialize the channel.

        Args:
            capacity: Maximum buffered items; 0 for synchronous handoff,
                None for unbounded
            name: Label used in repr and log messages

        Raises:
            ValueError: If capacity is negative
        """
        if capacity is not None and capacity < 0:
            raise ValueError(f"Channel capacity must be >= 0 or None, got {capacity}")

        self.capacity = capacity
        self.name = name
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False
        # Sequence numbers let a rendezvous put() wait for its own item to be taken
        self._put_seq = 0
        self._get_seq = 0

    def _full(self) -> bool:
        if self.capacity is None:
            return False
        return len(self._items) >= max(self.capacity, 1)

    def put(self, item: T) -> None:
        """Add an item, blocking while the channel is full.

        Args:
            item: Item to enqueue

        With capacity 0 this also waits for a consumer to take the item,
        unless the channel is closed first. The item then stays buffered
        for consumers that are still draining.

        Raises:
            ChannelClosed: If the channel is, or becomes, closed before the
                item could be enqueued
        """
        with self._cond:
            while self._full() and not self._closed:
                self._cond.wait()
            if self._closed:
                raise ChannelClosed(f"put() on closed {self.name}")

            self._items.append(item)
            self._put_seq += 1
            ticket = self._put_seq
            self._cond.notify_all()

            if self.capacity == 0:
                while self._get_seq < ticket and not self._closed:
                    self._cond.wait()

    def get(self) -> T:
        """Remove and return the oldest item, blocking while empty.

        Returns:
            The next item

        Raises:
            ChannelClosed: If the channel is closed and fully drained
        """
        with self._cond:
            while not self._items and not self._closed:
                self._cond.wait()
            if not self._items:
                raise ChannelClosed(f"{self.name} closed and drained")

            item = self._items.popleft()
            self._get_seq += 1
            self._cond.notify_all()
            return item

    def close(self) -> None:
        """Mark the channel closed. Buffered items remain available to get()."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def __iter__(self) -> Iterator[T]:
        """Yield items until the channel is closed and drained."""
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return

    def __repr__(self) -> str:
        return f"BoundedChannel(name={self.name!r}, capacity={self.capacity}, closed={self._closed})"


class CompletionBarrier:
    """Counts outstanding units of work and signals when none remain.

    Producers call add() before handing a unit to another thread, and the
    thread that finishes the unit calls done(). Because a unit is always
    added before its parent is marked done, the count reaches zero exactly
    once: when the last unit in the whole tree of work has finished.
    """

    def __init__(self, name: str = "barrier"):
        self.name = name
        self._count = 0
        self._cond = threading.Condition()

    def add(self, n: int = 1) -> None:
        """Register n new outstanding units."""
        with self._cond:
            self._count += n

    def done(self) -> None:
        """Mark one unit finished.

        Raises:
            RuntimeError: If called more times than add() was counted
        """
        with self._cond:
            if self._count <= 0:
                raise RuntimeError(f"{self.name}: done() called with no outstanding units")
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until no units are outstanding.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely

        Returns:
            True if the count reached zero, False on timeout
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)

    @property
    def outstanding(self) -> int:
        with self._cond:
            return self._count
