# auth/blocklist.py
"""
Administrative blocks on a phone number or email address for a given role.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String, UniqueConstraint, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Base, Mapped, mapped_column
from ..utils.datetime import get_current_time
from .phone import normalize_phone

logger = logging.getLogger(__name__)


class IdentifierType(str, Enum):
    PHONE = "phone"
    EMAIL = "email"


class BlockedIdentifier(Base):
    __tablename__ = "blocked_identifiers"
    __table_args__ = (
        UniqueConstraint("identifier_type", "value", "role", name="uq_blocked_identifier"),
    )

    identifier_type: Mapped[str] = mapped_column(String(10), nullable=False)
    value: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_current_time, nullable=False)


def _canonical(identifier_type: IdentifierType, value: str) -> str:
    if identifier_type == IdentifierType.PHONE:
        return normalize_phone(value)
    return value.strip().lower()


class BlocklistService:

    @staticmethod
    async def is_blocked(
        db: AsyncSession,
        role: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> bool:
        conditions = []
        if phone:
            conditions.append(
                (BlockedIdentifier.identifier_type == IdentifierType.PHONE.value)
                & (BlockedIdentifier.value == _canonical(IdentifierType.PHONE, phone))
            )
        if email:
            conditions.append(
                (BlockedIdentifier.identifier_type == IdentifierType.EMAIL.value)
                & (BlockedIdentifier.value == _canonical(IdentifierType.EMAIL, email))
            )
        if not conditions:
            return False

        result = await db.execute(
            select(BlockedIdentifier.id)
            .where(BlockedIdentifier.role == role, or_(*conditions))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def block(
        db: AsyncSession,
        identifier_type: IdentifierType,
        value: str,
        role: str,
        reason: Optional[str] = None,
    ) -> BlockedIdentifier:
        """Add a block. Blocking an already blocked identifier returns the existing row."""
        canonical = _canonical(identifier_type, value)
        result = await db.execute(
            select(BlockedIdentifier).where(
                BlockedIdentifier.identifier_type == identifier_type.value,
                BlockedIdentifier.value == canonical,
                BlockedIdentifier.role == role,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        blocked = BlockedIdentifier(
            identifier_type=identifier_type.value,
            value=canonical,
            role=role,
            reason=reason,
        )
        db.add(blocked)
        await db.flush()
        logger.warning(f"Blocked {identifier_type.value} {canonical} for role {role}")
        return blocked

    @staticmethod
    async def unblock(
        db: AsyncSession,
        identifier_type: IdentifierType,
        value: str,
        role: str,
    ) -> bool:
        result = await db.execute(
            delete(BlockedIdentifier).where(
                BlockedIdentifier.identifier_type == identifier_type.value,
                BlockedIdentifier.value == _canonical(identifier_type, value),
                BlockedIdentifier.role == role,
            )
        )
        return bool(result.rowcount)
