# auth/gateway.py
"""
Auth gateway: one state machine per flow, composed from the OTP, signup,
reset, session, blacklist, guard and audit services.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import IssuedToken, PasswordHasher
from ..utils.datetime import Clock, get_current_time
from .audit import (
    AuditService,
    LoginFailureReason,
    LoginOutcome,
    SecurityEventType,
    Severity,
    client_ip,
    client_user_agent,
)
from .blocklist import BlocklistService
from .errors import (
    AuthError,
    AuthenticationError,
    AuthorizationError,
    InternalError,
    NoPendingSignupError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from .notifier import LoggingNotifier, Notifier
from .otp import OTPService
from .password_reset import PasswordResetManager
from .pending_signup import PendingSignupStore
from .phone import is_valid_phone, normalize_phone
from .rate_limiting import BruteForceGuard, LoginBlockedError
from .schemas import (
    ForgotPasswordRequest,
    ForgotPasswordVerifyRequest,
    LoginRequest,
    ResetPasswordRequest,
    SendOTPRequest,
    SignupRequest,
    VerifyOTPRequest,
)
from .session_management import AuthContext, SessionManager, UserSession
from .token_blacklist import BlacklistService, RevocationReason
from .users import SIGNUP_ROLES, User, get_user_by_email, get_user_by_phone

logger = logging.getLogger(__name__)

BLOCKED_MESSAGE = "This account has been blocked. Please contact support for assistance."
INVALID_CREDENTIALS = "Invalid phone number, password, or role"


class AuthGateway:
    """Orchestrates signup, login, token rotation, logout and password reset."""

    def __init__(
        self,
        *,
        otp: OTPService,
        pending_signups: PendingSignupStore,
        password_resets: PasswordResetManager,
        sessions: SessionManager,
        guard: BruteForceGuard,
        hasher: PasswordHasher,
        notifier: Optional[Notifier] = None,
        clock: Clock = get_current_time,
    ):
        self.otp = otp
        self.pending_signups = pending_signups
        self.password_resets = password_resets
        self.sessions = sessions
        self.guard = guard
        self.hasher = hasher
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock

    # -- helpers -----------------------------------------------------------

    async def _notify(self, hook: Callable[..., Awaitable[None]], *args: Any) -> None:
        try:
            await hook(*args)
        except Exception as e:
            logger.exception(f"Notifier hook {hook.__name__} failed: {e}")

    async def _ensure_not_blocked(
        self,
        db: AsyncSession,
        role: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> None:
        if await BlocklistService.is_blocked(db, role, phone=phone, email=email):
            raise AuthorizationError(BLOCKED_MESSAGE, error_code="ACCOUNT_BLOCKED")

    @staticmethod
    def _role_label(role: str) -> str:
        return {"user": "User", "provider": "Provider", "admin": "Admin"}.get(role, "User")

    def _otp_data(self, phone: str, **extra: Any) -> Dict[str, Any]:
        return {"phone": phone, "otpExpiresIn": int(self.otp.ttl.total_seconds()), **extra}

    @staticmethod
    def _token_data(issued: IssuedToken, session: UserSession, user: User) -> Dict[str, Any]:
        return {
            "token": issued.token,
            "expiresAt": issued.expires_at.isoformat(),
            "user": user.public_dict(),
            "session": {"id": session.id, "deviceType": session.device_type},
        }

    # -- signup ------------------------------------------------------------

    async def signup(self, db: AsyncSession, request: Request, payload: SignupRequest) -> Dict[str, Any]:
        """Stage the signup and send an OTP; the account is created on verification."""
        phone, role = payload.phone, payload.role
        await self._ensure_not_blocked(db, role, phone=phone, email=payload.email)

        if await get_user_by_phone(db, phone, role) is not None:
            raise ValidationError(f"Phone number already registered as a {role}", error_code="PHONE_TAKEN")
        if await get_user_by_email(db, payload.email) is not None:
            raise ValidationError("Email already registered", error_code="EMAIL_TAKEN")

        password_hash = await self.hasher.hash(payload.password)
        await self.pending_signups.stage(
            phone,
            role,
            full_name=payload.full_name,
            email=payload.email,
            password_hash=password_hash,
            profile_image_ref=payload.profile_pic_url,
        )
        try:
            await self.otp.issue(phone)
        except AuthError:
            await self.pending_signups.discard(phone, role)
            raise
        return self._otp_data(phone, role=role)

    async def verify_signup(self, db: AsyncSession, request: Request, payload: VerifyOTPRequest) -> Dict[str, Any]:
        """Verify the OTP, then turn the pending signup into a verified user with a session."""
        phone = payload.phone
        await self.otp.verify(phone, payload.otp)

        roles = [payload.role] if payload.role else list(SIGNUP_ROLES)
        pending = None
        for role in roles:
            pending = await self.pending_signups.consume(phone, role)
            if pending is not None:
                break
        if pending is None:
            raise NoPendingSignupError()

        if await get_user_by_phone(db, phone, pending.role) is not None:
            raise ValidationError(f"Phone number already registered as a {pending.role}", error_code="PHONE_TAKEN")

        user = User(
            full_name=pending.full_name,
            email=pending.email,
            phone=phone,
            role=pending.role,
            hashed_password=pending.password_hash,
            profile_pic_url=pending.profile_image_ref,
            is_verified=True,
            is_active=True,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ValidationError("Account already exists", error_code="PHONE_TAKEN")

        issued, session = await self.sessions.issue(
            db, user, client_ip(request), client_user_agent(request)
        )
        data = self._token_data(issued, session, user)
        await AuditService.record_event(
            db, SecurityEventType.SIGNUP, f"New {user.role} account created and verified",
            user_id=user.id, request=request, now=self.clock(),
        )
        await self._notify(self.notifier.user_registered, user)
        await self._notify(self.notifier.session_created, user, session)
        return data

    # -- OTP (re)issue -----------------------------------------------------

    async def send_otp(self, db: AsyncSession, request: Request, payload: SendOTPRequest) -> Dict[str, Any]:
        phone = payload.phone
        user = await get_user_by_phone(db, phone, payload.role)
        if user is None:
            raise NotFoundError("User not found. Please register first.", error_code="USER_NOT_FOUND")
        await self._ensure_not_blocked(db, user.role, phone=phone, email=user.email)
        await self.otp.issue(phone)
        return self._otp_data(phone)

    async def resend_otp(self, db: AsyncSession, request: Request, payload: SendOTPRequest) -> Dict[str, Any]:
        """Re-issue a code for an account or a signup still waiting on verification."""
        phone = payload.phone
        user = await get_user_by_phone(db, phone, payload.role)
        if user is not None:
            await self._ensure_not_blocked(db, user.role, phone=phone, email=user.email)
        else:
            roles = [payload.role] if payload.role in SIGNUP_ROLES else list(SIGNUP_ROLES)
            staged = [role for role in roles if await self.pending_signups.exists(phone, role)]
            if not staged:
                raise NotFoundError("No account or pending signup found for this phone number.", error_code="USER_NOT_FOUND")
        await self.otp.resend(phone)
        return self._otp_data(phone)

    # -- login -------------------------------------------------------------

    async def login(self, db: AsyncSession, request: Request, payload: LoginRequest) -> Dict[str, Any]:
        """Password login, guarded by the rate limiter and the failure lockout.

        Every attempt is written to the audit log whatever the outcome.
        """
        phone = normalize_phone(payload.phone)
        role = payload.role
        limiter_key = f"{phone or payload.phone}:{role}"

        async def audit(outcome: LoginOutcome, reason: LoginFailureReason, user_id: Optional[int] = None) -> None:
            await AuditService.record_login_attempt(
                db, outcome, reason, phone=phone or None, role=role,
                user_id=user_id, request=request, now=self.clock(),
            )

        async def failed(reason: LoginFailureReason, exc: AuthError, user_id: Optional[int] = None) -> AuthError:
            await audit(LoginOutcome.FAILED, reason, user_id)
            await self.guard.record_failure("login", limiter_key)
            return exc

        try:
            await self.guard.check("login", limiter_key)
        except RateLimitedError:
            await audit(LoginOutcome.BLOCKED, LoginFailureReason.RATE_LIMITED)
            raise

        try:
            if not is_valid_phone(phone):
                raise await failed(
                    LoginFailureReason.INVALID_PHONE,
                    ValidationError("Please enter a valid 10-digit mobile number"),
                )

            try:
                await self.guard.check_login_lockout(db, phone, client_ip(request))
            except LoginBlockedError as e:
                await audit(LoginOutcome.BLOCKED, e.reason)
                raise

            user = await get_user_by_phone(db, phone, role)
            if user is None or not user.is_active:
                raise await failed(LoginFailureReason.USER_NOT_FOUND, AuthenticationError(INVALID_CREDENTIALS))

            if await BlocklistService.is_blocked(db, role, phone=phone, email=user.email):
                await audit(LoginOutcome.BLOCKED, LoginFailureReason.IDENTIFIER_BLOCKED, user.id)
                raise AuthorizationError(BLOCKED_MESSAGE, error_code="ACCOUNT_BLOCKED")

            if not await self.hasher.verify(payload.password, user.hashed_password):
                raise await failed(
                    LoginFailureReason.INVALID_PASSWORD,
                    AuthenticationError(INVALID_CREDENTIALS),
                    user.id,
                )

            issued, session = await self.sessions.issue(
                db, user, client_ip(request), client_user_agent(request)
            )
        except AuthError as e:
            if isinstance(e, InternalError):
                await audit(LoginOutcome.FAILED, LoginFailureReason.SERVER_ERROR)
            raise
        except SQLAlchemyError as e:
            logger.exception(f"Login for {phone} failed: {e}")
            await db.rollback()
            await audit(LoginOutcome.FAILED, LoginFailureReason.SERVER_ERROR)
            raise InternalError() from e

        data = self._token_data(issued, session, user)
        await audit(LoginOutcome.SUCCESS, LoginFailureReason.SUCCESS, user.id)
        await AuditService.record_event(
            db, SecurityEventType.LOGIN, f"Login from {session.device_type} device",
            user_id=user.id, request=request, now=self.clock(),
        )
        await self._notify(self.notifier.session_created, user, session)
        return data

    # -- authenticated session flows --------------------------------------

    async def refresh(self, db: AsyncSession, request: Request, auth: AuthContext) -> Dict[str, Any]:
        issued, session = await self.sessions.refresh(
            db, auth.token_jti, auth.user, client_ip(request), client_user_agent(request)
        )
        data = self._token_data(issued, session, auth.user)
        await AuditService.record_event(
            db, SecurityEventType.TOKEN_REFRESH, "Token refreshed; previous session revoked",
            user_id=auth.user.id, request=request, now=self.clock(),
        )
        return data

    async def logout(self, db: AsyncSession, request: Request, auth: AuthContext) -> None:
        await self.sessions.logout(
            db, auth.token_jti, auth.user.id, client_ip(request), client_user_agent(request)
        )
        await AuditService.record_event(
            db, SecurityEventType.LOGOUT, "User logged out",
            user_id=auth.user.id, request=request, now=self.clock(),
        )

    async def logout_all(self, db: AsyncSession, request: Request, auth: AuthContext) -> int:
        count = await self.sessions.logout_all(
            db, auth.user.id, RevocationReason.LOGOUT_ALL,
            client_ip(request), client_user_agent(request),
        )
        await AuditService.record_event(
            db, SecurityEventType.LOGOUT_ALL, f"Logged out of all devices ({count} sessions revoked)",
            user_id=auth.user.id, request=request, severity=Severity.WARNING,
            details={"revoked_count": count}, now=self.clock(),
        )
        return count

    async def list_sessions(self, db: AsyncSession, auth: AuthContext) -> List[Dict[str, Any]]:
        infos = await self.sessions.list_sessions(db, auth.user.id, auth.token_jti)
        return [info.model_dump(by_alias=True, mode="json") for info in infos]

    async def revoke_session(
        self,
        db: AsyncSession,
        request: Request,
        auth: AuthContext,
        session_id: int,
    ) -> Dict[str, Any]:
        session = await self.sessions.revoke_session_by_id(
            db, session_id, auth.user.id, client_ip(request), client_user_agent(request)
        )
        await AuditService.record_event(
            db, SecurityEventType.SESSION_REVOKED, f"Session {session_id} revoked",
            user_id=auth.user.id, request=request, severity=Severity.WARNING,
            details={"session_id": session_id}, now=self.clock(),
        )
        return {"sessionId": session.id, "wasCurrent": session.token_jti == auth.token_jti}

    # -- reporting ---------------------------------------------------------

    async def security_stats(self, db: AsyncSession, hours: int = 24) -> Dict[str, int]:
        """Aggregate session, blacklist and login counts for administrative reporting."""
        sessions = await self.sessions.stats(db)
        blacklist = await BlacklistService.stats(db, self.clock())
        logins = await AuditService.login_stats(db, hours, self.clock())
        return {
            "activeSessions": sessions["active_sessions"],
            "activeUsers": sessions["active_users"],
            "blacklistedTokens": blacklist["total_blacklisted"],
            "loginAttempts": logins["total_attempts"],
            "successfulLogins": logins["successful_logins"],
            "failedLogins": logins["failed_logins"],
            "blockedLogins": logins["blocked_attempts"],
            "windowHours": hours,
        }

    # -- forgot password ---------------------------------------------------

    async def _account_for_reset(self, db: AsyncSession, phone: str, role: str) -> User:
        user = await get_user_by_phone(db, phone, role)
        if user is None:
            raise NotFoundError(f"{self._role_label(role)} not found", error_code="USER_NOT_FOUND")
        await self._ensure_not_blocked(db, user.role, phone=phone, email=user.email)
        return user

    async def forgot_password(self, db: AsyncSession, request: Request, payload: ForgotPasswordRequest) -> Dict[str, Any]:
        await self._account_for_reset(db, payload.phone, payload.role)
        await self.otp.issue(payload.phone)
        return self._otp_data(payload.phone)

    async def forgot_password_verify(
        self,
        db: AsyncSession,
        request: Request,
        payload: ForgotPasswordVerifyRequest,
    ) -> Dict[str, Any]:
        await self.otp.verify(payload.phone, payload.otp)
        await self._account_for_reset(db, payload.phone, payload.role)
        reset = await self.password_resets.create(payload.phone, payload.role)
        return {"resetToken": reset.token, "expiresAt": reset.expires_at.isoformat()}

    async def reset_password(self, db: AsyncSession, request: Request, payload: ResetPasswordRequest) -> Dict[str, Any]:
        """Set a new password and revoke every session the account had."""
        phone = payload.phone
        await self.password_resets.validate(phone, payload.reset_token, payload.role)
        user = await self._account_for_reset(db, phone, payload.role)

        new_hash = await self.hasher.hash(payload.new_password)
        await self.password_resets.consume(phone, payload.reset_token, payload.role)

        user.hashed_password = new_hash
        # Commits the new hash together with the revocations
        revoked = await self.sessions.logout_all(
            db, user.id, RevocationReason.PASSWORD_CHANGE,
            client_ip(request), client_user_agent(request),
        )
        await AuditService.record_event(
            db, SecurityEventType.PASSWORD_CHANGE,
            "Password reset via forgot password flow. All sessions invalidated.",
            user_id=user.id, request=request, severity=Severity.WARNING,
            details={"revoked_sessions": revoked}, now=self.clock(),
        )
        return {"revokedSessions": revoked}
