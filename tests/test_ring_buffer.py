"""
Tests for the fixed-capacity ring buffers.
"""

import pytest

from signal_pipeline.continuous.ring_buffer import RingBuffer, TimestampedRingBuffer


class TestRingBuffer:
    """Append, eviction and indexing."""

    def test_append_and_evict(self):
        buf = RingBuffer[int](3)

        assert [buf.append(i) for i in range(5)] == [None, None, None, 0, 1]
        assert buf.to_list() == [2, 3, 4]
        assert buf.is_full
        assert buf.oldest() == 2
        assert buf.newest() == 4

    def test_negative_indexing_and_assignment(self):
        buf = RingBuffer[int](4)
        for i in range(6):
            buf.append(i)

        assert buf[0] == 2
        assert buf[-1] == 5
        buf[-1] = 50
        assert list(buf) == [2, 3, 4, 50]

    def test_index_out_of_range(self):
        buf = RingBuffer[int](2)
        buf.append(1)

        with pytest.raises(IndexError):
            buf[1]
        with pytest.raises(IndexError):
            buf[-2]

    def test_last_and_clear(self):
        buf = RingBuffer[int](5)
        for i in range(4):
            buf.append(i)

        assert buf.last(2) == [2, 3]
        assert buf.last(10) == [0, 1, 2, 3]
        assert buf.last(0) == []

        buf.clear()
        assert len(buf) == 0
        assert not buf
        assert buf.newest() is None

    def test_invalid_maxlen(self):
        with pytest.raises(ValueError):
            RingBuffer[int](0)


class TestTimestampedRingBuffer:
    """Time-windowed queries."""

    def test_since_and_values(self):
        buf = TimestampedRingBuffer[str](3)
        for i, value in enumerate("abcd"):
            buf.append_at(value, 1_000 * i)

        assert buf.values() == ["b", "c", "d"]
        assert buf.since(2_000) == ["c", "d"]
        assert buf.newest().timestamp_ms == 3_000
        assert len(buf) == 3

        buf.clear()
        assert buf.values() == []
