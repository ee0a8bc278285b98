"""
Ring Buffer - Fixed-size circular buffer for streaming data.

O(1) append, O(1) indexed read and write. When full, the oldest item is
overwritten.
"""

from dataclasses import dataclass
from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Fixed-size circular buffer with O(1) operations.

    Example:
        buf = RingBuffer[float](maxlen=100)
        buf.append(1.0)
        buf.append(2.0)
        buf[-1] = 2.5      # replace newest in place
        buf.to_list()      # [1.0, 2.5]
    """

    __slots__ = ("_buffer", "_maxlen", "_head", "_size")

    def __init__(self, maxlen: int):
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self._buffer: List[Optional[T]] = [None] * maxlen
        self._maxlen = maxlen
        self._head = 0  # Next write position
        self._size = 0

    def append(self, item: T) -> Optional[T]:
        """
        Append item. O(1).

        Returns:
            The evicted oldest item when the buffer was full, else None
        """
        evicted = self._buffer[self._head] if self._size == self._maxlen else None
        self._buffer[self._head] = item
        self._head = (self._head + 1) % self._maxlen
        if self._size < self._maxlen:
            self._size += 1
        return evicted

    def _position(self, index: int) -> int:
        if self._size == 0:
            raise IndexError("buffer is empty")
        if index < 0:
            index = self._size + index
        if index < 0 or index >= self._size:
            raise IndexError(f"index {index} out of range for size {self._size}")
        start = (self._head - self._size) % self._maxlen
        return (start + index) % self._maxlen

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0

    def __getitem__(self, index: int) -> T:
        """buf[0] is the oldest item, buf[-1] the newest."""
        return self._buffer[self._position(index)]  # type: ignore[return-value]

    def __setitem__(self, index: int, item: T) -> None:
        self._buffer[self._position(index)] = item

    def __iter__(self) -> Iterator[T]:
        """Iterate from oldest to newest."""
        for i in range(self._size):
            yield self[i]

    @property
    def maxlen(self) -> int:
        return self._maxlen

    @property
    def is_full(self) -> bool:
        return self._size == self._maxlen

    def clear(self) -> None:
        self._buffer = [None] * self._maxlen
        self._head = 0
        self._size = 0

    def to_list(self) -> List[T]:
        """Convert to list (oldest first)."""
        return list(self)

    def last(self, n: int) -> List[T]:
        """Last n items, oldest first."""
        if n <= 0:
            return []
        n = min(n, self._size)
        return [self[i] for i in range(self._size - n, self._size)]

    def newest(self) -> Optional[T]:
        return self[-1] if self._size > 0 else None

    def oldest(self) -> Optional[T]:
        return self[0] if self._size > 0 else None


@dataclass
class TimestampedItem(Generic[T]):
    """Item with timestamp."""

    timestamp_ms: int
    value: T


class TimestampedRingBuffer(Generic[T]):
    """
    Ring buffer of timestamped values for time-window queries.

    Timestamps are always supplied by the caller so that time can be
    controlled in tests.

    Example:
        buf = TimestampedRingBuffer[str](maxlen=20)
        buf.append_at("BUY", now_ms)
        recent = buf.since(now_ms - 90_000)
    """

    def __init__(self, maxlen: int):
        self._buffer = RingBuffer[TimestampedItem[T]](maxlen)

    def append_at(self, value: T, timestamp_ms: int) -> None:
        self._buffer.append(TimestampedItem(timestamp_ms, value))

    def __len__(self) -> int:
        return len(self._buffer)

    def __bool__(self) -> bool:
        return bool(self._buffer)

    def newest(self) -> Optional[TimestampedItem[T]]:
        return self._buffer.newest()

    def since(self, cutoff_ms: int) -> List[T]:
        """Values with timestamp >= cutoff, oldest first."""
        return [item.value for item in self._buffer if item.timestamp_ms >= cutoff_ms]

    def values(self) -> List[T]:
        """All values, oldest first."""
        return [item.value for item in self._buffer]

    def clear(self) -> None:
        self._buffer.clear()
