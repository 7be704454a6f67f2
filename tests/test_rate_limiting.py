"""
Tests for the sliding-window limiter and the login lockout.
"""
import pytest

from phonegate.auth.audit import AuditService, LoginFailureReason, LoginOutcome
from phonegate.auth.errors import RateLimitedError
from phonegate.auth.rate_limiting import (
    BruteForceGuard,
    InMemoryRateLimiter,
    LoginBlockedError,
    RateLimitRule,
)

from conftest import PHONE


class Ticks:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_window_rejects_n_plus_one_and_resets_after_window():
    ticks = Ticks()
    limiter = InMemoryRateLimiter(clock=ticks)
    rule = RateLimitRule(max_requests=3, window_seconds=60)

    for expected_remaining in (2, 1, 0):
        decision = await limiter.hit("k", rule)
        assert decision.allowed
        assert decision.remaining == expected_remaining

    rejected = await limiter.hit("k", rule)
    assert not rejected.allowed
    assert rejected.retry_after == 60

    ticks.now = 59.5
    assert not (await limiter.hit("k", rule)).allowed

    ticks.now = 60.0
    assert (await limiter.hit("k", rule)).allowed


@pytest.mark.asyncio
async def test_keys_do_not_share_windows():
    limiter = InMemoryRateLimiter(clock=Ticks())
    rule = RateLimitRule(max_requests=1, window_seconds=60)

    assert (await limiter.hit("a", rule)).allowed
    assert (await limiter.hit("b", rule)).allowed
    assert not (await limiter.hit("a", rule)).allowed


@pytest.mark.asyncio
async def test_check_does_not_count():
    limiter = InMemoryRateLimiter(clock=Ticks())
    rule = RateLimitRule(max_requests=1, window_seconds=60)

    for _ in range(3):
        assert (await limiter.check("k", rule)).allowed
    await limiter.record("k", rule)
    assert not (await limiter.check("k", rule)).allowed

    await limiter.reset("k")
    assert (await limiter.check("k", rule)).allowed


@pytest.mark.asyncio
async def test_guard_only_counts_recorded_login_failures(settings):
    guard = BruteForceGuard(settings, limiter=InMemoryRateLimiter(clock=Ticks()))
    key = f"{PHONE}:user"

    for _ in range(settings.LOGIN_RATE_LIMIT):
        await guard.check("login", key)
        await guard.record_failure("login", key)

    with pytest.raises(RateLimitedError) as exc_info:
        await guard.check("login", key)
    assert exc_info.value.status_code == 429
    assert exc_info.value.headers["Retry-After"] == str(settings.LOGIN_RATE_WINDOW)


@pytest.mark.asyncio
async def test_admit_raises_with_rule_message(settings):
    guard = BruteForceGuard(settings, limiter=InMemoryRateLimiter(clock=Ticks()))

    for _ in range(settings.SIGNUP_RATE_LIMIT):
        await guard.admit("signup", "10.0.0.1")
    with pytest.raises(RateLimitedError) as exc_info:
        await guard.admit("signup", "10.0.0.1")

    assert "signup" in exc_info.value.message


async def record_failures(db, count, phone=PHONE, ip="10.0.0.1", now=None):
    from types import SimpleNamespace

    request = SimpleNamespace(headers={"x-forwarded-for": ip}, client=None)
    for _ in range(count):
        await AuditService.record_login_attempt(
            db, LoginOutcome.FAILED, LoginFailureReason.INVALID_PASSWORD,
            phone=phone, role="user", request=request, now=now,
        )


@pytest.mark.asyncio
async def test_phone_lockout_catches_distributed_attempts(db, settings, clock):
    guard = BruteForceGuard(settings, clock=clock)
    for i in range(settings.LOGIN_PHONE_FAILURE_THRESHOLD):
        await record_failures(db, 1, ip=f"10.0.0.{i}", now=clock())

    with pytest.raises(LoginBlockedError) as exc_info:
        await guard.check_login_lockout(db, PHONE, "10.0.1.1")
    assert exc_info.value.reason == LoginFailureReason.PHONE_BLOCKED
    assert "for this account" in exc_info.value.message


@pytest.mark.asyncio
async def test_ip_lockout_spans_phones(db, settings, clock):
    guard = BruteForceGuard(settings, clock=clock)
    for i in range(settings.LOGIN_IP_FAILURE_THRESHOLD):
        await record_failures(db, 1, phone=f"98765432{i:02d}", now=clock())

    with pytest.raises(LoginBlockedError) as exc_info:
        await guard.check_login_lockout(db, "9123456789", "10.0.0.1")
    assert exc_info.value.reason == LoginFailureReason.IP_BLOCKED


@pytest.mark.asyncio
async def test_lockout_window_trails(db, settings, clock):
    guard = BruteForceGuard(settings, clock=clock)
    await record_failures(db, settings.LOGIN_PHONE_FAILURE_THRESHOLD, now=clock())

    clock.advance(minutes=settings.LOGIN_FAILURE_WINDOW_MINUTES + 1)

    await guard.check_login_lockout(db, PHONE, "10.0.0.1")
