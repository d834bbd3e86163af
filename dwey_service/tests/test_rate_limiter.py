from __future__ import annotations

from dwey_service.app.config import RateLimitConfig
from dwey_service.app.services.rate_limiter import InMemoryRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _limiter(clock: FakeClock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(
        RateLimitConfig(window_seconds=60, max_requests=5, overrides={"redirect": 60}),
        clock=clock,
    )


def test_sixth_request_in_window_is_rejected() -> None:
    clock = FakeClock()
    limiter = _limiter(clock)

    decisions = [limiter.check_and_consume("2348011111111", "create_link") for _ in range(6)]

    assert [d.allowed for d in decisions] == [True] * 5 + [False]
    assert decisions[4].remaining == 0
    assert decisions[5].retry_after_seconds == 60


def test_window_resets_after_expiry() -> None:
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.check_and_consume("acct", "fund_wallet")

    clock.now += 30
    blocked = limiter.check_and_consume("acct", "fund_wallet")
    clock.now += 30
    allowed = limiter.check_and_consume("acct", "fund_wallet")

    assert blocked.allowed is False
    assert blocked.retry_after_seconds == 30
    assert allowed.allowed is True
    assert allowed.remaining == 4


def test_keys_and_actions_are_counted_separately() -> None:
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(5):
        limiter.check_and_consume("acct", "create_link")

    assert limiter.check_and_consume("acct", "link_info").allowed is True
    assert limiter.check_and_consume("other", "create_link").allowed is True
    assert limiter.check_and_consume("acct", "create_link").allowed is False


def test_action_override_raises_limit() -> None:
    clock = FakeClock()
    limiter = _limiter(clock)

    decisions = [limiter.check_and_consume("ip-hash", "redirect") for _ in range(61)]

    assert all(d.allowed for d in decisions[:60])
    assert decisions[60].allowed is False


def test_evict_expired_drops_stale_windows() -> None:
    clock = FakeClock()
    limiter = _limiter(clock)
    limiter.check_and_consume("a", "create_link")
    limiter.check_and_consume("b", "create_link")

    assert limiter.evict_expired() == 0
    clock.now += 61
    assert limiter.evict_expired() == 2
