"""Fixed-capacity ring buffer holding the newest FeedRecords."""

import itertools

from livefeed.models import FeedRecord


class FeedBuffer:
    """Newest-first feed store with index-based eviction.

    Slots are allocated once at construction. When the buffer is full each
    push overwrites the oldest slot. Record ids are handed out by `next_id()`
    and keep increasing across evictions and `clear()`, so a consumer can
    spot gaps.
    """

    def __init__(self, capacity: int = 500):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._slots: list[FeedRecord | None] = [None] * capacity
        self._head = 0  # next slot to write
        self._size = 0
        self._ids = itertools.count(1)
        self._last_id = 0
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def last_id(self) -> int:
        return self._last_id

    @property
    def evicted(self) -> int:
        return self._evicted

    def __len__(self) -> int:
        return self._size

    def next_id(self) -> int:
        return next(self._ids)

    def push(self, record: FeedRecord):
        """Store a record as the newest entry, evicting the oldest when full."""
        if record.id <= self._last_id:
            raise ValueError(
                f"record id {record.id} is not greater than last id {self._last_id}"
            )
        if self._size == self._capacity:
            self._evicted += 1
        else:
            self._size += 1
        self._slots[self._head] = record
        self._head = (self._head + 1) % self._capacity
        self._last_id = record.id

    def snapshot(self) -> tuple[FeedRecord, ...]:
        """Return the stored records, newest first."""
        return tuple(
            self._slots[(self._head - 1 - i) % self._capacity]
            for i in range(self._size)
        )

    def clear(self):
        self._slots = [None] * self._capacity
        self._head = 0
        self._size = 0
