# auth/session_management.py
"""
Session registry: one durable row per issued token, revocable on its own.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import Boolean, DateTime, String, and_, case, delete, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import IssuedToken, TokenCodec
from ..db import Base, Mapped, mapped_column
from ..utils.datetime import Clock, get_current_time
from .errors import (
    InternalError,
    NotFoundError,
    SessionNotFoundError,
    SessionRevokedError,
    TokenInvalidError,
    TokenRevokedError,
)
from .token_blacklist import BlacklistService, RevocationReason
from .users import User

logger = logging.getLogger(__name__)


class UserSession(Base):
    """User session model."""
    __tablename__ = "user_sessions"

    user_id: Mapped[int] = mapped_column(index=True, nullable=False)
    token_jti: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    device_type: Mapped[str] = mapped_column(String(20), default="unknown", nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    revoked_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_current_time, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_activity: Mapped[datetime] = mapped_column(DateTime, default=get_current_time, nullable=False)


class SessionInfo(BaseModel):
    """Session information model."""
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    ip_address: Optional[str]
    user_agent: Optional[str]
    device_type: str
    is_current: bool
    created_at: datetime
    last_activity: datetime
    expires_at: datetime


@dataclass
class AuthContext:
    """What a verified request knows about its caller."""
    user: User
    session: UserSession
    claims: Dict[str, Any]

    @property
    def token_jti(self) -> str:
        return self.session.token_jti


def detect_device_type(user_agent: Optional[str]) -> str:
    if not user_agent:
        return "unknown"
    ua = user_agent.lower()
    if "ipad" in ua or "tablet" in ua:
        return "tablet"
    if "mobile" in ua or "android" in ua or "iphone" in ua or "okhttp" in ua or "dart" in ua:
        return "mobile"
    if "windows" in ua or "macintosh" in ua or "linux" in ua or "x11" in ua:
        return "desktop"
    return "unknown"


class SessionManager:
    """Session management service.

    Token minting and session rows always move together: a token is only
    returned after the row recording it has been committed.
    """

    def __init__(self, codec: TokenCodec, clock: Clock = get_current_time):
        self.codec = codec
        self.clock = clock

    def _new_session(
        self,
        user: User,
        issued: IssuedToken,
        now: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> UserSession:
        return UserSession(
            user_id=user.id,
            token_jti=issued.jti,
            ip_address=ip_address,
            user_agent=user_agent,
            device_type=detect_device_type(user_agent),
            created_at=now,
            last_activity=now,
            expires_at=issued.expires_at,
        )

    @staticmethod
    def _mark_revoked(session: UserSession, reason: RevocationReason, now: datetime) -> None:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason.value

    async def get_by_jti(self, db: AsyncSession, token_jti: str) -> Optional[UserSession]:
        result = await db.execute(select(UserSession).where(UserSession.token_jti == token_jti))
        return result.scalar_one_or_none()

    async def _active_sessions(self, db: AsyncSession, user_id: int, now: datetime) -> List[UserSession]:
        result = await db.execute(
            select(UserSession)
            .where(
                and_(
                    UserSession.user_id == user_id,
                    UserSession.is_revoked == False,  # noqa: E712
                    UserSession.expires_at > now,
                )
            )
            .order_by(UserSession.last_activity.desc(), UserSession.id.desc())
        )
        return list(result.scalars().all())

    async def issue(
        self,
        db: AsyncSession,
        user: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[IssuedToken, UserSession]:
        """Mint a token and record its session in one commit."""
        now = self.clock()
        user_id = user.id
        issued = self.codec.encode(user_id, user.role, now)
        session = self._new_session(user, issued, now, ip_address, user_agent)
        db.add(session)
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Could not record session for user {user_id}: {e}")
            raise InternalError("Could not create session") from e
        return issued, session

    async def refresh(
        self,
        db: AsyncSession,
        old_jti: str,
        user: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[IssuedToken, UserSession]:
        """Rotate a session.

        Revoking the old session, blacklisting its token and recording the
        new session commit together. On failure everything rolls back and
        the old token keeps working.
        """
        now = self.clock()
        user_id = user.id
        old = await self.get_by_jti(db, old_jti)
        if old is None or old.user_id != user_id:
            raise SessionNotFoundError()
        if old.is_revoked:
            raise SessionRevokedError()

        issued = self.codec.encode(user_id, user.role, now)
        try:
            self._mark_revoked(old, RevocationReason.TOKEN_REFRESH, now)
            await BlacklistService.add(
                db, old_jti, user_id, RevocationReason.TOKEN_REFRESH, old.expires_at,
                ip_address=ip_address, user_agent=user_agent, now=now,
            )
            new_session = self._new_session(user, issued, now, ip_address, user_agent)
            db.add(new_session)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Token refresh for user {user_id} rolled back: {e}")
            raise InternalError("Token refresh failed. Your current session is still valid.") from e

        return issued, new_session

    async def verify_incoming(self, db: AsyncSession, token: str) -> AuthContext:
        """Resolve a bearer token to its user and session, or raise."""
        claims = self.codec.decode(token)
        jti = claims["jti"]
        now = self.clock()

        if await BlacklistService.contains(db, jti, now):
            raise TokenRevokedError()

        session = await self.get_by_jti(db, jti)
        if session is None:
            raise SessionNotFoundError()
        if session.is_revoked or session.expires_at <= now:
            raise SessionRevokedError()

        user = await db.get(User, session.user_id)
        if user is None or not user.is_active or user.id != claims.get("user_id"):
            raise TokenInvalidError("User not found or inactive")

        session.last_activity = now
        return AuthContext(user=user, session=session, claims=claims)

    async def _revoke_many(
        self,
        db: AsyncSession,
        sessions: List[UserSession],
        reason: RevocationReason,
        now: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> int:
        for session in sessions:
            await BlacklistService.add(
                db, session.token_jti, session.user_id, reason, session.expires_at,
                ip_address=ip_address, user_agent=user_agent, now=now,
            )
            self._mark_revoked(session, reason, now)
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Revoking {len(sessions)} session(s) rolled back: {e}")
            raise InternalError("Could not revoke session") from e
        return len(sessions)

    async def logout(
        self,
        db: AsyncSession,
        token_jti: str,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        now = self.clock()
        session = await self.get_by_jti(db, token_jti)
        if session is None or session.user_id != user_id or session.is_revoked:
            return False
        await self._revoke_many(db, [session], RevocationReason.LOGOUT, now, ip_address, user_agent)
        return True

    async def logout_all(
        self,
        db: AsyncSession,
        user_id: int,
        reason: RevocationReason = RevocationReason.LOGOUT_ALL,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> int:
        """Revoke every active session of a user. Returns how many were revoked."""
        now = self.clock()
        sessions = await self._active_sessions(db, user_id, now)
        return await self._revoke_many(db, sessions, reason, now, ip_address, user_agent)

    async def revoke_session_by_id(
        self,
        db: AsyncSession,
        session_id: int,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserSession:
        now = self.clock()
        result = await db.execute(
            select(UserSession).where(
                and_(UserSession.id == session_id, UserSession.user_id == user_id)
            )
        )
        session = result.scalar_one_or_none()
        if session is None or session.is_revoked or session.expires_at <= now:
            raise NotFoundError("Session not found or already invalidated")
        await self._revoke_many(db, [session], RevocationReason.SESSION_REVOKED, now, ip_address, user_agent)
        return session

    async def list_sessions(
        self,
        db: AsyncSession,
        user_id: int,
        current_jti: Optional[str] = None,
    ) -> List[SessionInfo]:
        sessions = await self._active_sessions(db, user_id, self.clock())
        return [
            SessionInfo(
                id=session.id,
                ip_address=session.ip_address,
                user_agent=session.user_agent,
                device_type=session.device_type,
                is_current=session.token_jti == current_jti,
                created_at=session.created_at,
                last_activity=session.last_activity,
                expires_at=session.expires_at,
            )
            for session in sessions
        ]

    async def cleanup_expired(self, db: AsyncSession) -> int:
        """Delete sessions past their expiry."""
        result = await db.execute(
            delete(UserSession).where(UserSession.expires_at <= self.clock())
        )
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Removed {removed} expired sessions")
        return removed

    async def stats(self, db: AsyncSession) -> Dict[str, int]:
        """Session counts over rows that have not expired yet."""
        now = self.clock()
        active = UserSession.is_revoked.is_(False)
        result = await db.execute(
            select(
                func.count(case((active, 1))),
                func.count(case((UserSession.is_revoked.is_(True), 1))),
                func.count(distinct(case((active, UserSession.user_id)))),
                func.count(case((and_(active, UserSession.device_type == "mobile"), 1))),
                func.count(case((and_(active, UserSession.device_type == "desktop"), 1))),
                func.count(case((and_(active, UserSession.device_type == "tablet"), 1))),
                func.count(case((UserSession.created_at > now - timedelta(hours=24), 1))),
            ).where(UserSession.expires_at > now)
        )
        active_sessions, revoked, users, mobile, desktop, tablet, recent = result.one()
        return {
            "active_sessions": active_sessions,
            "revoked_sessions": revoked,
            "active_users": users,
            "mobile_sessions": mobile,
            "desktop_sessions": desktop,
            "tablet_sessions": tablet,
            "last_24h_sessions": recent,
        }
