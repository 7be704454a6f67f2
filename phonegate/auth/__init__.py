"""
Phone-number authentication: OTPs, sessions, revocation and brute-force defences.
"""
from typing import Optional

from ..cache import KeyValueStore
from ..core.config import Settings, settings as default_settings
from ..core.security import PasswordHasher, TokenCodec
from ..utils.datetime import Clock, get_current_time
from .delivery import CodeDeliveryGateway, ConsoleDeliveryGateway, DeliveryResult, HttpSmsGateway
from .errors import AuthError, register_exception_handlers
from .gateway import AuthGateway
from .notifier import LoggingNotifier, Notifier
from .otp import OTPService
from .password_reset import PasswordResetManager
from .pending_signup import PendingSignupStore
from .rate_limiting import BruteForceGuard, InMemoryRateLimiter
from .session_management import AuthContext, SessionManager, UserSession
from .users import User, UserRole


def build_delivery_gateway(settings: Settings) -> CodeDeliveryGateway:
    if settings.SMS_GATEWAY_URL:
        return HttpSmsGateway(
            settings.SMS_GATEWAY_URL,
            api_key=settings.SMS_GATEWAY_API_KEY,
            sender_id=settings.SMS_SENDER_ID,
            timeout=settings.OTP_DELIVERY_TIMEOUT,
            expires_in_seconds=settings.OTP_EXPIRE_SECONDS,
        )
    return ConsoleDeliveryGateway()


def build_auth_gateway(
    store: KeyValueStore,
    settings: Optional[Settings] = None,
    delivery: Optional[CodeDeliveryGateway] = None,
    notifier: Optional[Notifier] = None,
    clock: Clock = get_current_time,
    limiter: Optional[InMemoryRateLimiter] = None,
) -> AuthGateway:
    """Wire every auth service onto one key-value store."""
    settings = settings or default_settings
    delivery = delivery or build_delivery_gateway(settings)
    return AuthGateway(
        otp=OTPService(store, delivery, settings=settings, clock=clock),
        pending_signups=PendingSignupStore(store, settings=settings, clock=clock),
        password_resets=PasswordResetManager(store, settings=settings, clock=clock),
        sessions=SessionManager(TokenCodec(settings), clock=clock),
        guard=BruteForceGuard(settings, limiter=limiter, clock=clock),
        hasher=PasswordHasher(rounds=settings.BCRYPT_ROUNDS),
        notifier=notifier or LoggingNotifier(),
        clock=clock,
    )


__all__ = [
    "AuthContext", "AuthError", "AuthGateway", "BruteForceGuard",
    "CodeDeliveryGateway", "ConsoleDeliveryGateway", "DeliveryResult", "HttpSmsGateway",
    "InMemoryRateLimiter", "LoggingNotifier", "Notifier", "OTPService",
    "PasswordResetManager", "PendingSignupStore", "SessionManager",
    "User", "UserRole", "UserSession",
    "build_auth_gateway", "build_delivery_gateway", "register_exception_handlers",
]
