"""
Tests for the rolling candle store.
"""

from dataclasses import replace

import pytest

from signal_pipeline.continuous.candle_store import CandleStore, UpdateKind


class TestCandleStoreUpdate:
    """Append / replace / stale semantics."""

    def test_append_in_order(self, rising_candles):
        store = CandleStore(capacity=100)
        results = [store.update(c) for c in rising_candles[:5]]

        assert all(r.kind is UpdateKind.APPENDED for r in results)
        assert all(r.significant for r in results)
        assert len(store) == 5
        assert store.latest == rising_candles[4]

    def test_same_open_time_replaces(self, rising_candles):
        store = CandleStore()
        store.update(rising_candles[0])
        forming = replace(rising_candles[0], close=rising_candles[0].close * 1.01)

        result = store.update(forming)

        assert result.kind is UpdateKind.REPLACED
        assert result.applied
        assert result.changed
        assert len(store) == 1
        assert store.latest == forming

    def test_identical_replay_not_changed(self, rising_candles):
        store = CandleStore()
        store.update(rising_candles[0])

        result = store.update(rising_candles[0])

        assert result.kind is UpdateKind.REPLACED
        assert not result.changed
        assert not result.significant

    def test_older_unknown_candle_is_stale(self, rising_candles):
        store = CandleStore()
        store.update(rising_candles[0])
        store.update(rising_candles[2])

        result = store.update(rising_candles[1])

        assert result.kind is UpdateKind.STALE
        assert not result.applied
        assert not result.changed
        assert store.snapshot() == (rising_candles[0], rising_candles[2])

    def test_older_stored_candle_replaced_in_place(self, rising_candles):
        store = CandleStore()
        for c in rising_candles[:5]:
            store.update(c)
        corrected = replace(rising_candles[1], volume=9999.0)

        result = store.update(corrected)

        assert result.kind is UpdateKind.REPLACED
        assert store.snapshot()[1] == corrected
        assert len(store) == 5

    def test_capacity_evicts_oldest(self, rising_candles):
        store = CandleStore(capacity=3)
        results = [store.update(c) for c in rising_candles[:5]]

        assert len(store) == 3
        assert results[3].evicted == rising_candles[0]
        assert results[4].evicted == rising_candles[1]
        assert store.snapshot() == tuple(rising_candles[2:5])

    def test_open_times_strictly_increasing(self, choppy_candles):
        store = CandleStore(capacity=20)
        for c in choppy_candles:
            store.update(c)
            store.update(c)

        times = [c.open_time for c in store.snapshot()]
        assert times == sorted(set(times))

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            CandleStore(capacity=0)


class TestSnapshot:
    """Snapshots are immutable copies."""

    def test_snapshot_unaffected_by_later_updates(self, rising_candles):
        store = CandleStore()
        store.update(rising_candles[0])
        before = store.snapshot()

        store.update(rising_candles[1])
        store.clear()

        assert isinstance(before, tuple)
        assert before == (rising_candles[0],)
        assert len(store) == 0
        assert store.latest is None


class TestSignificance:
    """Minor-update detection."""

    def test_new_bar_always_significant(self, rising_candles):
        assert CandleStore.is_significant(None, rising_candles[0])
        assert CandleStore.is_significant(rising_candles[0], rising_candles[1])

    def test_small_move_not_significant(self, rising_candles):
        base = rising_candles[0]
        tick = replace(base, close=base.close * 1.0001)

        assert not CandleStore.is_significant(base, tick)

    def test_large_move_significant(self, rising_candles):
        base = rising_candles[0]
        tick = replace(base, close=base.close * 1.001)

        assert CandleStore.is_significant(base, tick)

    def test_custom_epsilon(self, rising_candles):
        base = rising_candles[0]
        tick = replace(base, close=base.close * 1.001)

        assert not CandleStore.is_significant(base, tick, epsilon=0.01)

    def test_update_reports_minor_replacement(self, rising_candles):
        store = CandleStore()
        base = rising_candles[0]
        store.update(base)

        result = store.update(replace(base, close=base.close * 1.0001, volume=base.volume + 1))

        assert result.applied and result.changed
        assert not result.significant
