# auth/otp.py
"""
One-time code issuance and verification with attempt counting and lockout.
"""
import asyncio
import logging
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..cache import KeyValueStore, json_serializer
from ..core.config import Settings, settings as default_settings
from ..utils.datetime import Clock, get_current_time, seconds_until, format_wait
from .delivery import CodeDeliveryGateway
from .errors import (
    AuthenticationError,
    CodeDeliveryError,
    InternalError,
    LockedError,
    OTPExpiredError,
    OTPNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class OTPRecord:
    """The live code for one phone number."""
    phone: str
    code: str
    created_at: datetime
    expires_at: datetime
    attempts: int = 0
    locked_until: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def store_ttl(self, now: datetime) -> float:
        """Seconds the record must survive: the code's life or the lockout, whichever is longer."""
        horizon = self.expires_at
        if self.locked_until and self.locked_until > horizon:
            horizon = self.locked_until
        return max(1.0, (horizon - now).total_seconds())

    def dump(self) -> str:
        data = asdict(self)
        for field in ("created_at", "expires_at", "locked_until"):
            if data[field] is not None:
                data[field] = data[field].isoformat()
        return json_serializer.serialize(data)

    @classmethod
    def load(cls, raw: str) -> "OTPRecord":
        data: Dict[str, Any] = json_serializer.deserialize(raw)
        for field in ("created_at", "expires_at", "locked_until"):
            if data.get(field):
                data[field] = datetime.fromisoformat(data[field])
        return cls(**data)


class OTPService:
    """Issue, resend and verify one-time codes.

    Every change to a record is a compare-and-set against the exact value
    that was read, so concurrent guesses for the same phone cannot both
    land on the same attempt number.
    """

    key_template = "otp:{phone}"

    def __init__(
        self,
        store: KeyValueStore,
        gateway: CodeDeliveryGateway,
        settings: Optional[Settings] = None,
        clock: Clock = get_current_time,
        max_retries: int = 16,
    ):
        settings = settings or default_settings
        self.store = store
        self.gateway = gateway
        self.clock = clock
        self.code_length = settings.OTP_LENGTH
        self.ttl = timedelta(seconds=settings.OTP_EXPIRE_SECONDS)
        self.max_attempts = settings.OTP_MAX_ATTEMPTS
        self.lockout = timedelta(seconds=settings.OTP_LOCKOUT_SECONDS)
        self.delivery_timeout = settings.OTP_DELIVERY_TIMEOUT
        self.max_retries = max_retries

    def _key(self, phone: str) -> str:
        return self.key_template.format(phone=phone)

    def generate_code(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self.code_length))

    def _locked(self, record: OTPRecord, now: datetime) -> LockedError:
        remaining = seconds_until(record.locked_until, now)
        return LockedError(
            f"Too many failed attempts. Please wait {format_wait(remaining)} before retrying.",
            lockout_time_remaining=remaining,
        )

    async def _deliver(self, phone: str, code: str) -> None:
        try:
            result = await asyncio.wait_for(
                self.gateway.send(phone, code),
                timeout=self.delivery_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"OTP delivery to {phone} timed out after {self.delivery_timeout}s")
            raise CodeDeliveryError(details={"reason": "timeout"})
        except Exception as e:
            logger.exception(f"OTP delivery to {phone} raised: {e}")
            raise CodeDeliveryError(details={"reason": "gateway_error"}) from e

        if not result.success:
            logger.error(f"OTP delivery to {phone} failed: {result.error}")
            raise CodeDeliveryError(details={"reason": result.error or "gateway_error"})

    async def issue(self, phone: str) -> OTPRecord:
        """Generate, deliver and store a fresh code, replacing any earlier one.

        Raises:
            LockedError: the phone is inside a lockout window.
            CodeDeliveryError: the gateway failed or timed out; nothing is stored.
        """
        key = self._key(phone)
        raw = await self.store.get(key)
        if raw is not None:
            existing = OTPRecord.load(raw)
            if existing.is_locked(self.clock()):
                raise self._locked(existing, self.clock())

        code = self.generate_code()
        await self._deliver(phone, code)

        for _ in range(self.max_retries):
            now = self.clock()
            record = OTPRecord(
                phone=phone,
                code=code,
                created_at=now,
                expires_at=now + self.ttl,
            )
            if await self.store.compare_and_set(key, raw, record.dump(), ttl=record.store_ttl(now)):
                logger.info(f"OTP issued for {phone}")
                return record

            # Someone else touched the record meanwhile; never overwrite a fresh lockout
            raw = await self.store.get(key)
            if raw is not None:
                current = OTPRecord.load(raw)
                if current.is_locked(now):
                    raise self._locked(current, now)

        raise InternalError("Could not store OTP, please retry")

    async def resend(self, phone: str) -> OTPRecord:
        """Issue a new code. A live lockout is left untouched."""
        return await self.issue(phone)

    async def verify(self, phone: str, code: str) -> None:
        """Check ``code`` for ``phone``; returns only on success.

        Raises:
            OTPNotFoundError: no live record.
            LockedError: locked now, or this failure used the last attempt.
            OTPExpiredError: the code is past its expiry; the record is purged.
            AuthenticationError: wrong code, with ``remaining_attempts``.
        """
        key = self._key(phone)

        for _ in range(self.max_retries):
            raw = await self.store.get(key)
            if raw is None:
                raise OTPNotFoundError()

            record = OTPRecord.load(raw)
            now = self.clock()

            if record.is_locked(now):
                raise self._locked(record, now)

            if now > record.expires_at:
                await self.store.compare_and_set(key, raw, None)
                raise OTPExpiredError()

            if secrets.compare_digest(record.code.encode(), str(code).encode()):
                if await self.store.compare_and_set(key, raw, None):
                    logger.info(f"OTP verified for {phone}")
                    return
                continue

            record.attempts += 1
            if record.attempts >= self.max_attempts:
                record.locked_until = now + self.lockout
            if not await self.store.compare_and_set(key, raw, record.dump(), ttl=record.store_ttl(now)):
                continue

            if record.locked_until is not None:
                logger.warning(f"OTP lockout for {phone} after {record.attempts} failed attempts")
                raise self._locked(record, now)

            remaining = self.max_attempts - record.attempts
            raise AuthenticationError(
                f"Invalid OTP. {remaining} attempts remaining",
                error_code="INVALID_OTP",
                details={"remaining_attempts": remaining},
            )

        raise InternalError("Could not verify OTP, please retry")

    async def peek(self, phone: str) -> Optional[OTPRecord]:
        """Return the live record without changing it."""
        raw = await self.store.get(self._key(phone))
        return OTPRecord.load(raw) if raw is not None else None
