# auth/token_blacklist.py
"""
Revocation list for signed tokens that must stop working before they expire.
"""
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import DateTime, String, case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Base, Mapped, mapped_column
from ..utils.datetime import get_current_time

logger = logging.getLogger(__name__)


class RevocationReason(str, Enum):
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"
    PASSWORD_CHANGE = "password_change"
    LOGOUT_ALL = "logout_all"
    SESSION_REVOKED = "session_revoked"


class TokenBlacklist(Base):
    """One row per revoked token id, kept until the token would have expired anyway."""
    __tablename__ = "token_blacklist"

    token_jti: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(index=True, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    blacklisted_at: Mapped[datetime] = mapped_column(DateTime, default=get_current_time, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


class BlacklistService:
    """Blacklist operations. Writes join the caller's transaction; nothing here commits."""

    @staticmethod
    async def add(
        db: AsyncSession,
        token_jti: str,
        user_id: int,
        reason: RevocationReason,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Blacklist a token id. Returns False if it was already listed."""
        existing = await db.execute(
            select(TokenBlacklist.id).where(TokenBlacklist.token_jti == token_jti)
        )
        if existing.scalar_one_or_none() is not None:
            return False

        db.add(TokenBlacklist(
            token_jti=token_jti,
            user_id=user_id,
            reason=RevocationReason(reason).value,
            expires_at=expires_at,
            blacklisted_at=now or get_current_time(),
            ip_address=ip_address,
            user_agent=user_agent,
        ))
        await db.flush()
        return True

    @staticmethod
    async def contains(db: AsyncSession, token_jti: str, now: Optional[datetime] = None) -> bool:
        now = now or get_current_time()
        result = await db.execute(
            select(TokenBlacklist.id)
            .where(TokenBlacklist.token_jti == token_jti, TokenBlacklist.expires_at > now)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def reap(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """Delete entries whose tokens have expired naturally."""
        now = now or get_current_time()
        result = await db.execute(
            delete(TokenBlacklist).where(TokenBlacklist.expires_at <= now)
        )
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Reaped {removed} expired blacklist entries")
        return removed

    @staticmethod
    async def stats(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
        """Counts of live entries, by reason and over the last day."""
        now = now or get_current_time()
        result = await db.execute(
            select(TokenBlacklist.reason, func.count(TokenBlacklist.id))
            .where(TokenBlacklist.expires_at > now)
            .group_by(TokenBlacklist.reason)
        )
        stats = {f"{reason.value}_count": 0 for reason in RevocationReason}
        for reason, count in result.all():
            stats[f"{reason}_count"] = count
        recent = await db.execute(
            select(func.count(case((TokenBlacklist.blacklisted_at > now - timedelta(hours=24), 1))))
            .where(TokenBlacklist.expires_at > now)
        )
        stats["total_blacklisted"] = sum(stats.values())
        stats["last_24h_count"] = recent.scalar_one()
        return stats
