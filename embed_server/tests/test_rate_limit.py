"""Tests for the sliding-window token endpoint limiter."""
from embed_server.rate_limit import SlidingWindowLimiter


class FakeMonotonic:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_allows_up_to_limit_then_blocks():
    clock = FakeMonotonic()
    limiter = SlidingWindowLimiter(3, window_seconds=60, monotonic=clock)
    assert [limiter.check_and_consume("1.2.3.4")[0] for _ in range(3)] == [True, True, True]
    allowed, retry_after = limiter.check_and_consume("1.2.3.4")
    assert allowed is False
    assert retry_after == 60


def test_keys_are_independent():
    limiter = SlidingWindowLimiter(1, monotonic=FakeMonotonic())
    assert limiter.check_and_consume("a") == (True, None)
    assert limiter.check_and_consume("b") == (True, None)
    assert limiter.check_and_consume("a")[0] is False


def test_window_slides():
    clock = FakeMonotonic()
    limiter = SlidingWindowLimiter(2, window_seconds=60, monotonic=clock)
    limiter.check_and_consume("ip")
    clock.now += 30
    limiter.check_and_consume("ip")
    clock.now += 20
    allowed, retry_after = limiter.check_and_consume("ip")
    assert allowed is False
    assert retry_after == 10
    clock.now += 11
    assert limiter.check_and_consume("ip") == (True, None)


def test_zero_limit_disables():
    limiter = SlidingWindowLimiter(0)
    assert all(limiter.check_and_consume("ip")[0] for _ in range(100))


def test_reset_clears_counts():
    limiter = SlidingWindowLimiter(1, monotonic=FakeMonotonic())
    limiter.check_and_consume("ip")
    limiter.reset()
    assert limiter.check_and_consume("ip") == (True, None)


def test_refused_requests_do_not_extend_the_window():
    clock = FakeMonotonic()
    limiter = SlidingWindowLimiter(1, window_seconds=60, monotonic=clock)
    limiter.check_and_consume("ip")
    for _ in range(5):
        clock.now += 10
        assert limiter.check_and_consume("ip")[0] is False
    clock.now += 10.5
    assert limiter.check_and_consume("ip") == (True, None)
