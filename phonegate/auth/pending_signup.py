# auth/pending_signup.py
"""
Staging area for signups that are waiting on phone verification.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from ..cache import KeyValueStore, json_serializer
from ..core.config import Settings, settings as default_settings
from ..utils.datetime import Clock, get_current_time
from .errors import InternalError

logger = logging.getLogger(__name__)


@dataclass
class PendingSignup:
    phone: str
    role: str
    full_name: str
    email: str
    password_hash: str
    profile_image_ref: Optional[str]
    created_at: datetime
    expires_at: datetime

    def dump(self) -> str:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["expires_at"] = self.expires_at.isoformat()
        return json_serializer.serialize(data)

    @classmethod
    def load(cls, raw: str) -> "PendingSignup":
        data = json_serializer.deserialize(raw)
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["expires_at"] = datetime.fromisoformat(data["expires_at"])
        return cls(**data)


class PendingSignupStore:
    """One staged signup per (phone, role); a later signup replaces an earlier one."""

    key_template = "signup:{phone}:{role}"

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
        self.ttl = timedelta(seconds=settings.PENDING_SIGNUP_EXPIRE_SECONDS)
        self.max_retries = max_retries

    def _key(self, phone: str, role: str) -> str:
        return self.key_template.format(phone=phone, role=role)

    async def stage(
        self,
        phone: str,
        role: str,
        *,
        full_name: str,
        email: str,
        password_hash: str,
        profile_image_ref: Optional[str] = None,
    ) -> PendingSignup:
        now = self.clock()
        pending = PendingSignup(
            phone=phone,
            role=role,
            full_name=full_name,
            email=email,
            password_hash=password_hash,
            profile_image_ref=profile_image_ref,
            created_at=now,
            expires_at=now + self.ttl,
        )
        await self.store.set(self._key(phone, role), pending.dump(), ttl=self.ttl.total_seconds())
        logger.info(f"Staged {role} signup for {phone}")
        return pending

    async def consume(self, phone: str, role: str) -> Optional[PendingSignup]:
        """Atomically take the staged signup, or None if there is none (or it expired)."""
        key = self._key(phone, role)
        for _ in range(self.max_retries):
            raw = await self.store.get(key)
            if raw is None:
                return None
            if await self.store.compare_and_set(key, raw, None):
                pending = PendingSignup.load(raw)
                if self.clock() > pending.expires_at:
                    return None
                return pending
        raise InternalError("Could not read pending signup, please retry")

    async def exists(self, phone: str, role: str) -> bool:
        raw = await self.store.get(self._key(phone, role))
        return raw is not None and self.clock() <= PendingSignup.load(raw).expires_at

    async def discard(self, phone: str, role: str) -> bool:
        return await self.store.delete(self._key(phone, role))
