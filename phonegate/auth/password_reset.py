# auth/password_reset.py
"""
Single-use password-reset sessions, created after an OTP check succeeds.
"""
import logging
import secrets
import uuid
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timedelta
from typing import Optional

from ..cache import KeyValueStore, json_serializer
from ..core.config import Settings, settings as default_settings
from ..utils.datetime import Clock, get_current_time
from .errors import InternalError, ResetTokenError

logger = logging.getLogger(__name__)


@dataclass
class PasswordResetSession:
    phone: str
    token: str
    expires_at: datetime
    role: str = "user"
    consumed: bool = False

    def dump(self) -> str:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat()
        return json_serializer.serialize(data)

    @classmethod
    def load(cls, raw: str) -> "PasswordResetSession":
        data = json_serializer.deserialize(raw)
        data["expires_at"] = datetime.fromisoformat(data["expires_at"])
        return cls(**data)


class PasswordResetManager:
    """Create, validate and consume reset sessions.

    A consumed session stays in the store until its TTL runs out so that a
    second use is reported as "already used" rather than "not found".
    """

    key_template = "pwreset:{phone}"

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[Settings] = None,
        clock: Clock = get_current_time,
        max_retries: int = 16,
    ):
        settings = settings or default_settings
        self.store = store
        self.clock = clock
        self.ttl = timedelta(seconds=settings.PASSWORD_RESET_EXPIRE_SECONDS)
        self.max_retries = max_retries

    def _key(self, phone: str) -> str:
        return self.key_template.format(phone=phone)

    async def create(self, phone: str, role: str = "user") -> PasswordResetSession:
        session = PasswordResetSession(
            phone=phone,
            role=role,
            token=uuid.uuid4().hex,
            expires_at=self.clock() + self.ttl,
        )
        await self.store.set(self._key(phone), session.dump(), ttl=self.ttl.total_seconds())
        logger.info(f"Password reset session created for {phone} ({role})")
        return session

    def _check(
        self,
        session: Optional[PasswordResetSession],
        phone: str,
        token: str,
        role: str,
    ) -> PasswordResetSession:
        # A token verified for one role never resets another account on the same phone
        if session is None or session.phone != phone or session.role != role:
            raise ResetTokenError(
                "Reset session not found. Please restart the password reset.",
                error_code="RESET_SESSION_NOT_FOUND",
            )
        if not secrets.compare_digest(session.token.encode(), str(token).encode()):
            raise ResetTokenError("Invalid reset token", error_code="RESET_TOKEN_INVALID")
        if session.consumed:
            raise ResetTokenError("Reset token already used", error_code="RESET_TOKEN_USED")
        if self.clock() > session.expires_at:
            raise ResetTokenError("Reset token expired", error_code="RESET_TOKEN_EXPIRED")
        return session

    async def validate(self, phone: str, token: str, role: str = "user") -> PasswordResetSession:
        raw = await self.store.get(self._key(phone))
        session = PasswordResetSession.load(raw) if raw is not None else None
        return self._check(session, phone, token, role)

    async def consume(self, phone: str, token: str, role: str = "user") -> PasswordResetSession:
        """Flip ``consumed`` to true exactly once; every later call fails as already used."""
        key = self._key(phone)
        for _ in range(self.max_retries):
            raw = await self.store.get(key)
            session = PasswordResetSession.load(raw) if raw is not None else None
            session = self._check(session, phone, token, role)

            used = replace(session, consumed=True)
            remaining = max(1.0, (session.expires_at - self.clock()).total_seconds())
            if await self.store.compare_and_set(key, raw, used.dump(), ttl=remaining):
                logger.info(f"Password reset session consumed for {phone}")
                return used
        raise InternalError("Could not complete password reset, please retry")
