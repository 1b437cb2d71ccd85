import json
import math
import pytest
from core.config import settings
from core.exceptions import RateLimitExceeded
from core.kv import MemoryKV
from middleware.rate_limiter import (
    RateLimiter, RateLimitRecord, login_rate_limiter, lead_rate_limiter,
    api_rate_limiter, analytics_rate_limiter, setup_rate_limiter
)
from tests.conftest import FailingKV

IP = "203.0.113.9"


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryKV(clock=clock)


def make_limiter(clock, max_requests=3, window_ms=60_000, **kwargs):
    return RateLimiter(
        type="test",
        window_ms=window_ms,
        max_requests=max_requests,
        message="Slow down",
        clock=clock,
        **kwargs
    )


def test_key_format():
    assert make_limiter(FakeClock()).key(IP) == f"ratelimit:test:{IP}"


def test_allows_max_then_refuses(clock, store):
    limiter = make_limiter(clock, max_requests=3)

    for expected_remaining in ("2", "1", "0"):
        record, headers = limiter.hit(store, IP)
        assert headers["X-RateLimit-Limit"] == "3"
        assert headers["X-RateLimit-Remaining"] == expected_remaining

    with pytest.raises(RateLimitExceeded) as exc_info:
        limiter.hit(store, IP)

    exc = exc_info.value
    assert exc.status_code == 429
    assert exc.to_dict() == {
        "success": False,
        "error": "Slow down",
        "code": "RATE_LIMIT_EXCEEDED",
        "retryAfter": 60
    }
    assert exc.headers["Retry-After"] == "60"
    assert exc.headers["X-RateLimit-Remaining"] == "0"


def test_record_format(clock, store):
    limiter = make_limiter(clock)

    limiter.hit(store, IP)
    limiter.hit(store, IP)

    record = json.loads(store.get(limiter.key(IP)))
    assert record == {"count": 2, "firstRequest": int(clock.now * 1000)}


def test_reset_header_is_window_end(clock, store):
    limiter = make_limiter(clock, window_ms=60_000)

    _, headers = limiter.hit(store, IP)

    assert headers["X-RateLimit-Reset"] == str(math.ceil(clock.now + 60))


def test_retry_after_counts_down(clock, store):
    limiter = make_limiter(clock, max_requests=1, window_ms=60_000)
    limiter.hit(store, IP)

    clock.advance(45)

    with pytest.raises(RateLimitExceeded) as exc_info:
        limiter.hit(store, IP)
    assert exc_info.value.retry_after == 15


def test_rejected_hits_are_not_stored(clock, store):
    limiter = make_limiter(clock, max_requests=2)
    limiter.hit(store, IP)
    limiter.hit(store, IP)

    for _ in range(3):
        with pytest.raises(RateLimitExceeded):
            limiter.hit(store, IP)

    assert json.loads(store.get(limiter.key(IP)))["count"] == 2


def test_window_expiry_allows_again(clock, store):
    limiter = make_limiter(clock, max_requests=2, window_ms=60_000)
    limiter.hit(store, IP)
    limiter.hit(store, IP)
    with pytest.raises(RateLimitExceeded):
        limiter.hit(store, IP)

    clock.advance(60)

    record, headers = limiter.hit(store, IP)
    assert record.count == 1
    assert headers["X-RateLimit-Remaining"] == "1"


def test_stale_record_starts_new_window(clock, store):
    """A record older than the window is replaced even if the store kept it."""
    limiter = make_limiter(clock, max_requests=2, window_ms=60_000)
    old = RateLimitRecord(count=2, first_request=int((clock.now - 120) * 1000))
    store.put(limiter.key(IP), old.to_json())

    record, _ = limiter.hit(store, IP)

    assert record.count == 1
    assert record.first_request == int(clock.now * 1000)


def test_clients_are_counted_separately(clock, store):
    limiter = make_limiter(clock, max_requests=1)
    limiter.hit(store, IP)

    record, _ = limiter.hit(store, "198.51.100.1")

    assert record.count == 1


def test_forgive_gives_back_a_hit(clock, store):
    limiter = make_limiter(clock, max_requests=1, skip_successful_requests=True)

    for _ in range(5):
        record, _ = limiter.hit(store, IP)
        limiter.forgive(store, IP, record)

    assert json.loads(store.get(limiter.key(IP)))["count"] == 0


def test_store_failure_fails_open(clock):
    limiter = make_limiter(clock, max_requests=1)

    for _ in range(3):
        record, headers = limiter.hit(FailingKV(), IP)
        assert record is None
        assert headers == {}


def test_corrupt_record_fails_open(clock, store):
    limiter = make_limiter(clock)
    store.put(limiter.key(IP), "not json")

    record, headers = limiter.hit(store, IP)

    assert record is None
    assert headers == {}


def test_named_limiters_development(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "development")

    assert login_rate_limiter().max_requests == 100
    assert lead_rate_limiter().max_requests == 50
    assert api_rate_limiter().max_requests == 5000
    assert analytics_rate_limiter().max_requests == 2000
    assert setup_rate_limiter().max_requests == 5


def test_named_limiters_production(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")

    login = login_rate_limiter()
    assert login.max_requests == 20
    assert login.window_ms == 15 * 60 * 1000
    assert login.skip_successful_requests is True

    lead = lead_rate_limiter()
    assert lead.max_requests == 10
    assert lead.window_ms == 60 * 60 * 1000

    assert api_rate_limiter().max_requests == 1000
    assert analytics_rate_limiter().max_requests == 500
    assert analytics_rate_limiter().window_ms == 60 * 1000
    assert setup_rate_limiter().max_requests == 5


def test_overrides_skip_setup_limiter(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_MAX_REQUESTS", 7)
    monkeypatch.setattr(settings, "RATE_LIMIT_WINDOW_MS", 1000)

    for factory in (login_rate_limiter, lead_rate_limiter, api_rate_limiter, analytics_rate_limiter):
        limiter = factory()
        assert limiter.max_requests == 7
        assert limiter.window_ms == 1000

    setup = setup_rate_limiter()
    assert setup.max_requests == 5
    assert setup.window_ms == 60 * 60 * 1000


def test_window_seconds_rounds_up():
    assert make_limiter(FakeClock(), window_ms=1500).window_seconds == 2
