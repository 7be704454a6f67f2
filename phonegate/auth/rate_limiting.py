# auth/rate_limiting.py
"""
Rate limiting and login lockout for authentication endpoints.
"""
import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from datetime import timedelta
from functools import wraps
from typing import Any, Callable, Deque, Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, settings as default_settings
from ..utils.datetime import Clock, get_current_time
from .audit import AuditService, LoginFailureReason
from .errors import RateLimitedError
from .phone import normalize_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int
    message: str = "Too many requests. Please try again later."


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class InMemoryRateLimiter:
    """Sliding-window rate limiter keeping a timestamp log per key."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.requests: Dict[str, Deque[float]] = {}
        self.lock = asyncio.Lock()
        self.clock = clock

    def _window(self, key: str, window_seconds: int, now: float) -> Deque[float]:
        log = self.requests.setdefault(key, deque())
        window_start = now - window_seconds
        while log and log[0] <= window_start:
            log.popleft()
        return log

    def _decision(self, log: Deque[float], rule: RateLimitRule, now: float) -> RateLimitDecision:
        if len(log) >= rule.max_requests:
            retry_after = math.ceil(log[0] + rule.window_seconds - now)
            return RateLimitDecision(False, 0, max(1, retry_after))
        return RateLimitDecision(True, rule.max_requests - len(log))

    async def check(self, key: str, rule: RateLimitRule) -> RateLimitDecision:
        """Report whether one more request would be allowed, without counting it."""
        async with self.lock:
            now = self.clock()
            return self._decision(self._window(key, rule.window_seconds, now), rule, now)

    async def hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision:
        """Count a request if it is allowed."""
        async with self.lock:
            now = self.clock()
            log = self._window(key, rule.window_seconds, now)
            decision = self._decision(log, rule, now)
            if decision.allowed:
                log.append(now)
                decision.remaining -= 1
            return decision

    async def record(self, key: str, rule: RateLimitRule) -> None:
        """Count a request unconditionally."""
        async with self.lock:
            now = self.clock()
            self._window(key, rule.window_seconds, now).append(now)

    async def reset(self, key: str) -> None:
        async with self.lock:
            self.requests.pop(key, None)

    async def purge(self) -> int:
        """Forget keys with no requests left in any window."""
        async with self.lock:
            empty = [key for key, log in self.requests.items() if not log]
            for key in empty:
                del self.requests[key]
            return len(empty)


class LoginBlockedError(RateLimitedError):
    """Login refused because of recent failures from this IP or against this phone."""
    error_code = "LOGIN_BLOCKED"

    def __init__(self, message: str, reason: LoginFailureReason, retry_after: int):
        super().__init__(message, retry_after=retry_after)
        self.reason = reason


class BruteForceGuard:
    """Windowed limiters per endpoint class plus the login lockout."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        limiter: Optional[InMemoryRateLimiter] = None,
        clock: Clock = get_current_time,
    ):
        settings = settings or default_settings
        self.limiter = limiter or InMemoryRateLimiter()
        self.clock = clock
        self.rules: Dict[str, RateLimitRule] = {
            "login": RateLimitRule(
                settings.LOGIN_RATE_LIMIT, settings.LOGIN_RATE_WINDOW,
                "Too many failed login attempts. Please try again later.",
            ),
            "signup": RateLimitRule(
                settings.SIGNUP_RATE_LIMIT, settings.SIGNUP_RATE_WINDOW,
                "Too many signup attempts from this IP. Please try again later.",
            ),
            "otp_request": RateLimitRule(
                settings.OTP_REQUEST_RATE_LIMIT, settings.OTP_REQUEST_RATE_WINDOW,
                "Too many OTP requests. Please try again later.",
            ),
            "otp_verify": RateLimitRule(
                settings.OTP_VERIFY_RATE_LIMIT, settings.OTP_VERIFY_RATE_WINDOW,
                "Too many OTP verification attempts. Please try again later.",
            ),
            "password_reset": RateLimitRule(
                settings.PASSWORD_RESET_RATE_LIMIT, settings.PASSWORD_RESET_RATE_WINDOW,
                "Too many password reset attempts. Please try again later.",
            ),
            "refresh": RateLimitRule(
                settings.REFRESH_RATE_LIMIT, settings.REFRESH_RATE_WINDOW,
                "Too many token refresh requests. Please try again later.",
            ),
        }
        self.login_window = timedelta(minutes=settings.LOGIN_FAILURE_WINDOW_MINUTES)
        self.ip_threshold = settings.LOGIN_IP_FAILURE_THRESHOLD
        self.phone_threshold = settings.LOGIN_PHONE_FAILURE_THRESHOLD

    def _key(self, rule_name: str, key: str) -> str:
        return f"{rule_name}:{key}"

    def _rejected(self, rule_name: str, decision: RateLimitDecision) -> RateLimitedError:
        logger.warning(f"Rate limit '{rule_name}' exceeded, retry in {decision.retry_after}s")
        return RateLimitedError(self.rules[rule_name].message, retry_after=decision.retry_after)

    async def admit(self, rule_name: str, key: str) -> RateLimitDecision:
        """Count a request against ``rule_name``; raise once the window is full."""
        decision = await self.limiter.hit(self._key(rule_name, key), self.rules[rule_name])
        if not decision.allowed:
            raise self._rejected(rule_name, decision)
        return decision

    async def check(self, rule_name: str, key: str) -> RateLimitDecision:
        """Raise if the window is full, without counting this request."""
        decision = await self.limiter.check(self._key(rule_name, key), self.rules[rule_name])
        if not decision.allowed:
            raise self._rejected(rule_name, decision)
        return decision

    async def record_failure(self, rule_name: str, key: str) -> None:
        await self.limiter.record(self._key(rule_name, key), self.rules[rule_name])

    async def check_login_lockout(
        self,
        db: AsyncSession,
        phone: str,
        ip_address: Optional[str],
    ) -> None:
        """Block an IP or a phone with too many recent failed logins.

        The phone threshold catches attempts spread over many IPs.
        """
        since = self.clock() - self.login_window
        retry_after = int(self.login_window.total_seconds())

        if ip_address:
            ip_failures = await AuditService.count_failed_attempts(db, since, ip_address=ip_address)
            if ip_failures >= self.ip_threshold:
                raise LoginBlockedError(
                    "Too many failed login attempts from this IP address. Please try again later.",
                    LoginFailureReason.IP_BLOCKED,
                    retry_after,
                )

        phone_failures = await AuditService.count_failed_attempts(db, since, phone=phone)
        if phone_failures >= self.phone_threshold:
            raise LoginBlockedError(
                "Too many failed login attempts for this account. Please try again later.",
                LoginFailureReason.PHONE_BLOCKED,
                retry_after,
            )


# Key functions receive the request and the endpoint's keyword arguments

def client_ip_key(request: Request, kwargs: Dict[str, Any]) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def phone_key(request: Request, kwargs: Dict[str, Any]) -> str:
    payload = kwargs.get("payload")
    phone = normalize_phone(getattr(payload, "phone", None))
    return phone or client_ip_key(request, kwargs)


def user_key(request: Request, kwargs: Dict[str, Any]) -> str:
    auth = kwargs.get("auth")
    if auth is not None:
        return f"user:{auth.user.id}"
    return client_ip_key(request, kwargs)


def rate_limit(
    rule_name: str,
    key_func: Callable[[Request, Dict[str, Any]], str] = client_ip_key,
):
    """Rate limiting decorator for endpoints taking ``request`` (and optionally ``response``)."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request: Optional[Request] = kwargs.get("request")
            if request is None:
                for arg in args:
                    if isinstance(arg, Request):
                        request = arg
                        break
            if request is None:
                raise RuntimeError(f"{func.__name__} must accept a 'request' argument to be rate limited")

            guard: BruteForceGuard = request.app.state.brute_force_guard
            key = key_func(request, kwargs)

            decision = await guard.admit(rule_name, key)
            result = await func(*args, **kwargs)

            response = kwargs.get("response")
            if response is not None and hasattr(response, "headers"):
                response.headers["X-RateLimit-Limit"] = str(guard.rules[rule_name].max_requests)
                response.headers["X-RateLimit-Remaining"] = str(max(0, decision.remaining))
            return result

        return wrapper
    return decorator
