import pytest

from pos_ingest.services.rate_limiter import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_allows_up_to_limit_then_rejects(clock):
    limiter = SlidingWindowRateLimiter(3, 60, clock=clock)

    assert [limiter.allow("T1") for _ in range(4)] == [True, True, True, False]
    assert limiter.remaining("T1") == 0


def test_keys_are_independent(clock):
    limiter = SlidingWindowRateLimiter(1, 60, clock=clock)

    assert limiter.allow("T1") is True
    assert limiter.allow("T2") is True
    assert limiter.allow("T1") is False


def test_window_slides(clock):
    limiter = SlidingWindowRateLimiter(2, 60, clock=clock)
    limiter.allow("T1")
    clock.advance(30)
    limiter.allow("T1")

    clock.advance(29)
    assert limiter.allow("T1") is False

    # The first hit is now exactly 60s old and leaves the window
    clock.advance(1)
    assert limiter.allow("T1") is True
    assert limiter.allow("T1") is False


def test_rejected_requests_are_not_counted(clock):
    limiter = SlidingWindowRateLimiter(1, 60, clock=clock)
    limiter.allow("T1")
    for _ in range(10):
        clock.advance(5)
        limiter.allow("T1")

    clock.advance(10)
    assert limiter.allow("T1") is True


def test_least_recently_used_key_is_evicted(clock):
    limiter = SlidingWindowRateLimiter(1, 60, max_keys=2, clock=clock)
    limiter.allow("A")
    limiter.allow("B")
    limiter.allow("A")  # rejected, but marks A as recently used
    limiter.allow("C")  # evicts B

    assert limiter.remaining("A") == 0
    assert limiter.allow("B") is True


def test_reset(clock):
    limiter = SlidingWindowRateLimiter(1, 60, clock=clock)
    limiter.allow("A")
    limiter.allow("B")

    limiter.reset("A")
    assert limiter.allow("A") is True
    assert limiter.allow("B") is False

    limiter.reset()
    assert limiter.allow("B") is True


@pytest.mark.parametrize("max_requests, window", [(0, 60), (1, 0)])
def test_rejects_bad_configuration(max_requests, window):
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_requests, window)
