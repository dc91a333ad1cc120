from datetime import timedelta

from utils.results import Failure

from conftest import run_concurrently

WINDOW = timedelta(seconds=60)


class TestSlidingWindowLimiter:
    def test_allows_up_to_the_limit(self, engine):
        for n in range(1, 4):
            result = engine.limiter.hit("login", "a@example.com", 3, WINDOW)
            assert result.ok and result.value == n
        denied = engine.limiter.hit("login", "a@example.com", 3, WINDOW)
        assert denied.failure is Failure.RATE_LIMITED
        assert "60 seconds" in denied.message

    def test_identity_is_case_insensitive(self, engine):
        engine.limiter.hit("login", "A@Example.com", 1, WINDOW)
        assert not engine.limiter.hit("login", "a@example.com ", 1, WINDOW)

    def test_window_slides(self, engine, clock):
        engine.limiter.hit("login", "b@example.com", 2, WINDOW)
        clock.advance(seconds=30)
        engine.limiter.hit("login", "b@example.com", 2, WINDOW)
        assert not engine.limiter.hit("login", "b@example.com", 2, WINDOW)
        clock.advance(seconds=31)
        assert engine.limiter.hit("login", "b@example.com", 2, WINDOW).ok

    def test_denied_attempts_do_not_extend_the_window(self, engine, clock):
        engine.limiter.hit("login", "c@example.com", 1, WINDOW)
        for _ in range(5):
            clock.advance(seconds=10)
            assert not engine.limiter.hit("login", "c@example.com", 1, WINDOW)
        clock.advance(seconds=11)
        assert engine.limiter.hit("login", "c@example.com", 1, WINDOW).ok

    def test_parallel_burst_stops_at_the_limit(self, app, engine):
        results = run_concurrently(app, 8, lambda: engine.limiter.hit("login", "burst@example.com", 3, WINDOW))
        assert [r.ok for r in results].count(True) == 3
        assert sorted(r.value for r in results if r.ok) == [1, 2, 3]
