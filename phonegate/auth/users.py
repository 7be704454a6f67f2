# auth/users.py
"""
The user table, as far as authentication needs it.
"""
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, String, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Base, TimestampMixin, Mapped, mapped_column


class UserRole(str, Enum):
    USER = "user"
    PROVIDER = "provider"
    ADMIN = "admin"


SIGNUP_ROLES = (UserRole.USER.value, UserRole.PROVIDER.value)


class User(TimestampMixin, Base):
    """A marketplace account. One phone may hold one account per role."""
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("phone", "role", name="uq_users_phone_role"),)

    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(15), index=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER.value, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    profile_pic_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "fullName": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "profilePicUrl": self.profile_pic_url,
            "isVerified": self.is_verified,
        }


async def get_user_by_phone(db: AsyncSession, phone: str, role: Optional[str] = None) -> Optional[User]:
    """Look a user up by phone, within one role when ``role`` is given."""
    query = select(User).where(User.phone == phone)
    if role is not None:
        query = query.where(User.role == role)
    result = await db.execute(query.order_by(User.id))
    return result.scalars().first()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalars().first()


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    return await db.get(User, user_id)
