"""Tests for the per-id write rate limiter."""

from __future__ import annotations

import threading

from bookmarksync.server.ratelimit import RateLimiter

ID_A = "11111111-1111-4111-8111-111111111111"
ID_B = "22222222-2222-4222-8222-222222222222"


class TestRateLimiter:

    def test_first_write_accepted(self):
        assert RateLimiter().should_accept(ID_A, now=0.0)

    def test_second_write_in_window_rejected(self):
        limiter = RateLimiter()
        assert limiter.should_accept(ID_A, now=100.0)
        assert not limiter.should_accept(ID_A, now=129.9)

    def test_write_after_window_accepted(self):
        limiter = RateLimiter()
        limiter.should_accept(ID_A, now=100.0)
        assert limiter.should_accept(ID_A, now=130.0)

    def test_rejection_does_not_extend_window(self):
        limiter = RateLimiter()
        limiter.should_accept(ID_A, now=0.0)
        assert not limiter.should_accept(ID_A, now=20.0)
        assert not limiter.should_accept(ID_A, now=29.0)
        assert limiter.should_accept(ID_A, now=30.0)

    def test_ids_independent(self):
        limiter = RateLimiter()
        assert limiter.should_accept(ID_A, now=0.0)
        assert limiter.should_accept(ID_B, now=1.0)

    def test_custom_window(self):
        limiter = RateLimiter(window_seconds=5)
        limiter.should_accept(ID_A, now=0.0)
        assert not limiter.should_accept(ID_A, now=4.0)
        assert limiter.should_accept(ID_A, now=5.0)

    def test_retry_after(self):
        limiter = RateLimiter()
        assert limiter.retry_after(ID_A, now=0.0) == 0.0
        limiter.should_accept(ID_A, now=10.0)
        assert limiter.retry_after(ID_A, now=25.0) == 15.0

    def test_release_reopens_window(self):
        limiter = RateLimiter()
        assert limiter.should_accept(ID_A, now=10.0)
        assert limiter.release(ID_A, 10.0)
        assert limiter.should_accept(ID_A, now=11.0)

    def test_release_keeps_newer_window(self):
        limiter = RateLimiter()
        limiter.should_accept(ID_A, now=10.0)
        assert not limiter.release(ID_A, 5.0)
        assert not limiter.should_accept(ID_A, now=11.0)

    def test_release_unknown_id(self):
        assert not RateLimiter().release(ID_A, 1.0)

    def test_sweep_evicts_only_expired(self):
        limiter = RateLimiter()
        limiter.should_accept(ID_A, now=0.0)
        limiter.should_accept(ID_B, now=25.0)
        assert limiter.sweep(now=31.0) == 1
        assert len(limiter) == 1
        assert not limiter.should_accept(ID_B, now=31.0)

    def test_periodic_sweep_bounds_memory(self):
        limiter = RateLimiter(sweep_every=10)
        for i in range(100):
            limiter.should_accept(f"id-{i}", now=float(i * 60))
        assert len(limiter) < 10

    def test_sweep_keeps_throttling_behaviour(self):
        limiter = RateLimiter(sweep_every=1)
        limiter.should_accept(ID_A, now=0.0)
        assert not limiter.should_accept(ID_A, now=10.0)
        assert limiter.should_accept(ID_A, now=40.0)

    def test_concurrent_writers_one_accepted(self):
        limiter = RateLimiter()
        barrier = threading.Barrier(8)
        results = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            accepted = limiter.should_accept(ID_A, now=1000.0)
            with lock:
                results.append(accepted)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
