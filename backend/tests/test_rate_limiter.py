import pytest

from services.rate_limiter import RateLimiter, ServiceLimits


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_refuses_without_consuming_when_exhausted(clock):
    limiter = RateLimiter({"goong": ServiceLimits(hourly=2, daily=10)}, clock=clock)
    assert limiter.check_and_log("goong")
    assert limiter.check_and_log("goong")
    assert not limiter.check_and_log("goong")
    assert limiter.get_usage_stats("goong")["usage"]["hourly"] == 2
    assert limiter.get_usage_stats("goong")["usage"]["daily"] == 2


def test_hourly_window_rolls_over(clock):
    limiter = RateLimiter({"goong": ServiceLimits(hourly=1, daily=10)}, clock=clock)
    assert limiter.check_and_log("goong")
    assert not limiter.check_and_log("goong")
    clock.now += 3600
    assert limiter.check_and_log("goong")
    usage = limiter.get_usage_stats("goong")["usage"]
    assert usage["hourly"] == 1
    assert usage["daily"] == 2


def test_users_have_separate_budgets(clock):
    limiter = RateLimiter({"nominatim": ServiceLimits(hourly=1)}, clock=clock)
    assert limiter.check_and_log("nominatim", "alice")
    assert limiter.check_and_log("nominatim", "bob")
    assert not limiter.check_and_log("nominatim", "alice")


def test_unknown_service_is_allowed(clock):
    limiter = RateLimiter({}, clock=clock)
    assert limiter.check_and_log("mystery")


def test_time_until_reset_and_retry_after(clock):
    limiter = RateLimiter({"goong": ServiceLimits(hourly=1, daily=5)}, clock=clock)
    assert limiter.retry_after("goong") is None
    limiter.check_and_log("goong")
    clock.now += 600
    assert limiter.get_time_until_reset("goong")["hourly"] == pytest.approx(3000)
    assert limiter.retry_after("goong") == pytest.approx(3000)


def test_percentage_and_reset(clock):
    limiter = RateLimiter({"goong": ServiceLimits(hourly=4, daily=8)}, clock=clock)
    limiter.check_and_log("goong")
    stats = limiter.get_usage_stats("goong")
    assert stats["percentage_used"]["hourly"] == 25.0
    assert stats["percentage_used"]["monthly"] == 0.0
    limiter.reset("goong")
    assert limiter.get_usage_stats("goong")["usage"]["hourly"] == 0


def test_threshold_warning_logged_once(clock, caplog):
    limiter = RateLimiter({"goong": ServiceLimits(hourly=10)}, clock=clock)
    with caplog.at_level("WARNING", logger="services.rate_limiter"):
        for _ in range(9):
            limiter.check_and_log("goong")
    messages = [r.getMessage() for r in caplog.records]
    assert sum("usage at 80%" in m for m in messages) == 1
    assert sum("usage at 90%" in m for m in messages) == 1
