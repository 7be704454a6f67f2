# auth/audit.py
"""
Security audit logging: login attempts and auth-relevant events.
"""
import json
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import Request
from sqlalchemy import DateTime, Index, String, Text, case, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Base, Mapped, mapped_column
from ..utils.datetime import get_current_time

logger = logging.getLogger(__name__)


class LoginOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"


class LoginFailureReason(str, Enum):
    INVALID_PHONE = "invalid_phone"
    IP_BLOCKED = "ip_blocked"
    PHONE_BLOCKED = "phone_blocked"
    USER_NOT_FOUND = "user_not_found"
    IDENTIFIER_BLOCKED = "identifier_blocked"
    INVALID_PASSWORD = "invalid_password"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    SUCCESS = "success"


class SecurityEventType(str, Enum):
    SIGNUP = "signup"
    LOGIN = "login"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    SESSION_REVOKED = "session_revoked"
    TOKEN_REFRESH = "token_refresh"
    PASSWORD_CHANGE = "password_change"
    ADMIN_PROVISIONED = "admin_provisioned"
    IDENTIFIER_BLOCKED = "identifier_blocked"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"


class LoginAttempt(Base):
    """Every login attempt, whatever the outcome."""
    __tablename__ = "login_attempts"
    __table_args__ = (
        Index("ix_login_attempts_phone_time", "phone", "attempted_at"),
        Index("ix_login_attempts_ip_time", "ip_address", "attempted_at"),
    )

    phone: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(DateTime, default=get_current_time, nullable=False)


class SecurityEvent(Base):
    """Append-only record of auth-relevant events."""
    __tablename__ = "security_events"

    user_id: Mapped[Optional[int]] = mapped_column(index=True, nullable=True)
    event_type: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), default=Severity.INFO.value, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON string
    occurred_at: Mapped[datetime] = mapped_column(DateTime, default=get_current_time, index=True, nullable=False)


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def client_user_agent(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    return request.headers.get("user-agent")


class AuditService:
    """Audit logging service.

    Writes are best effort: a failure is logged and rolled back, and never
    reaches the caller. Callers commit their own work before auditing it, so
    the rollback only discards the audit row.
    """

    @staticmethod
    async def _append(db: AsyncSession, row: Base, what: str) -> bool:
        try:
            db.add(row)
            await db.commit()
            return True
        except SQLAlchemyError as e:
            logger.exception(f"Failed to write {what} to audit log: {e}")
            await db.rollback()
            await AuditService._reload(db)
            return False

    @staticmethod
    async def _reload(db: AsyncSession) -> None:
        # Rollback expires everything the caller loaded, and an async session
        # cannot lazy-load on attribute access.
        for instance in list(db.identity_map.values()):
            try:
                await db.refresh(instance)
            except SQLAlchemyError as e:
                logger.error(f"Could not reload {instance!r} after audit failure: {e}")

    @staticmethod
    async def record_login_attempt(
        db: AsyncSession,
        outcome: LoginOutcome,
        reason: LoginFailureReason,
        phone: Optional[str] = None,
        role: Optional[str] = None,
        user_id: Optional[int] = None,
        request: Optional[Request] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        attempt = LoginAttempt(
            phone=phone,
            role=role,
            ip_address=client_ip(request),
            user_agent=client_user_agent(request),
            outcome=outcome.value,
            reason=reason.value,
            user_id=user_id,
            attempted_at=now or get_current_time(),
        )
        if outcome != LoginOutcome.SUCCESS:
            logger.warning(f"Login {outcome.value} for {phone} ({role}) from {attempt.ip_address}: {reason.value}")
        return await AuditService._append(db, attempt, "login attempt")

    @staticmethod
    async def record_event(
        db: AsyncSession,
        event_type: SecurityEventType,
        message: str,
        user_id: Optional[int] = None,
        request: Optional[Request] = None,
        severity: Severity = Severity.INFO,
        details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        event = SecurityEvent(
            user_id=user_id,
            event_type=event_type.value,
            message=message,
            ip_address=client_ip(request),
            user_agent=client_user_agent(request),
            severity=severity.value,
            details=json.dumps(details, default=str) if details else None,
            occurred_at=now or get_current_time(),
        )
        if severity == Severity.WARNING:
            logger.warning(f"Security event {event_type.value} for user {user_id}: {message}")
        return await AuditService._append(db, event, f"{event_type.value} event")

    @staticmethod
    async def count_failed_attempts(
        db: AsyncSession,
        since: datetime,
        phone: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """Count failed login attempts since ``since`` for a phone or an IP."""
        query = select(func.count(LoginAttempt.id)).where(
            LoginAttempt.outcome == LoginOutcome.FAILED.value,
            LoginAttempt.attempted_at > since,
        )
        if phone is not None:
            query = query.where(LoginAttempt.phone == phone)
        if ip_address is not None:
            query = query.where(LoginAttempt.ip_address == ip_address)
        result = await db.execute(query)
        return result.scalar_one()

    @staticmethod
    async def login_stats(db: AsyncSession, hours: int = 24, now: Optional[datetime] = None) -> Dict[str, int]:
        """Totals of login attempts over the last ``hours`` hours."""
        since = (now or get_current_time()) - timedelta(hours=hours)
        result = await db.execute(
            select(
                func.count(LoginAttempt.id),
                func.count(case((LoginAttempt.outcome == LoginOutcome.SUCCESS.value, 1))),
                func.count(case((LoginAttempt.outcome == LoginOutcome.FAILED.value, 1))),
                func.count(case((LoginAttempt.outcome == LoginOutcome.BLOCKED.value, 1))),
                func.count(distinct(LoginAttempt.phone)),
                func.count(distinct(LoginAttempt.ip_address)),
            ).where(LoginAttempt.attempted_at > since)
        )
        total, successes, failures, blocked, phones, ips = result.one()
        return {
            "total_attempts": total,
            "successful_logins": successes,
            "failed_logins": failures,
            "blocked_attempts": blocked,
            "unique_phones": phones,
            "unique_ips": ips,
        }

    @staticmethod
    async def recent_events(
        db: AsyncSession,
        user_id: Optional[int] = None,
        limit: int = 50
    ) -> List[SecurityEvent]:
        """Get the latest security events, optionally for one user."""
        query = select(SecurityEvent).order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit)
        if user_id is not None:
            query = query.where(SecurityEvent.user_id == user_id)
        result = await db.execute(query)
        return list(result.scalars().all())
