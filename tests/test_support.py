"""Tests for money conversion, the dedup cache and keyed locks."""

import threading
import time
from decimal import Decimal

import pytest

from square_sync.locking import KeyedLock
from square_sync.money import from_minor_units, quantize, to_minor_units
from square_sync.services.dedup import DedupCache


class TestMoney:
    @pytest.mark.parametrize(
        "amount,minor",
        [
            ("50", 5000),
            (Decimal("19.99"), 1999),
            (12.345, 1234),
            ("12.355", 1236),
            ("0.005", 0),
            (" 7.1 ", 710),
        ],
    )
    def test_to_minor_units(self, amount, minor):
        assert to_minor_units(amount) == minor

    def test_from_minor_units(self):
        assert from_minor_units(5000) == Decimal("50.00")
        assert from_minor_units("1") == Decimal("0.01")

    def test_quantize(self):
        assert str(quantize("25")) == "25.00"

    def test_invalid_amount(self):
        with pytest.raises(ValueError):
            to_minor_units("twelve")


class TestDedupCache:
    def test_first_add_wins(self):
        cache = DedupCache()

        assert cache.add("evt-1") is True
        assert cache.add("evt-1") is False
        assert cache.seen("evt-1") is True
        assert cache.seen("evt-2") is False

    def test_expiry(self):
        now = [1000.0]
        cache = DedupCache(ttl_seconds=60, clock=lambda: now[0])
        cache.add("evt-1")

        now[0] += 59
        assert cache.add("evt-1") is False

        now[0] += 2
        assert cache.add("evt-1") is True

    def test_expired_entries_purged(self):
        now = [0.0]
        cache = DedupCache(ttl_seconds=10, clock=lambda: now[0])
        cache.add("a")
        cache.add("b")

        now[0] = 20.0
        cache.add("c")

        assert len(cache) == 1

    def test_concurrent_add_admits_one(self):
        cache = DedupCache()
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(cache.add("evt-1"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            DedupCache(ttl_seconds=0)


class TestKeyedLock:
    def test_same_key_serialized(self):
        locks = KeyedLock()
        active = []
        overlap = []

        def worker():
            with locks.hold(("customer", 7)):
                active.append(1)
                if len(active) > 1:
                    overlap.append(True)
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlap == []

    def test_different_keys_independent(self):
        locks = KeyedLock()

        with locks.hold("a"):
            acquired = threading.Event()

            def other():
                with locks.hold("b"):
                    acquired.set()

            t = threading.Thread(target=other)
            t.start()
            assert acquired.wait(timeout=1)
            t.join()

    def test_released_locks_dropped(self):
        locks = KeyedLock()

        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0
