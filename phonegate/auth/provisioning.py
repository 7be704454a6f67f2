# auth/provisioning.py
"""
Deployment-time creation of the bootstrap admin account.

This is the only way an admin credential gets special treatment: it is
written here, audited, and afterwards logs in through the normal guarded
login flow like everyone else.
"""
import logging
from typing import Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import PasswordHasher
from .audit import AuditService, SecurityEventType, Severity
from .errors import ValidationError
from .phone import is_valid_phone, normalize_phone
from .users import User, UserRole, get_user_by_phone

logger = logging.getLogger(__name__)


async def provision_admin(
    db: AsyncSession,
    hasher: PasswordHasher,
    phone: str,
    password: str,
    full_name: str = "Administrator",
    email: str = "admin@example.com",
    source: str = "cli",
) -> Tuple[User, bool]:
    """Create the admin for ``phone`` or reset its password.

    Returns:
        (user, created): the admin row and whether it was newly created.
    """
    phone = normalize_phone(phone)
    if not is_valid_phone(phone):
        raise ValidationError("Please enter a valid 10-digit mobile number")
    if not password or len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")

    hashed = await hasher.hash(password)
    user = await get_user_by_phone(db, phone, UserRole.ADMIN.value)
    created = user is None
    if created:
        user = User(
            full_name=full_name,
            email=email.lower(),
            phone=phone,
            role=UserRole.ADMIN.value,
            hashed_password=hashed,
            is_verified=True,
            is_active=True,
        )
        db.add(user)
    else:
        user.hashed_password = hashed
        user.is_active = True
    await db.commit()

    action = "created" if created else "updated"
    logger.warning(f"Bootstrap admin {phone} {action} via {source}")
    await AuditService.record_event(
        db,
        SecurityEventType.ADMIN_PROVISIONED,
        f"Bootstrap admin {action} via {source}",
        user_id=user.id,
        severity=Severity.WARNING,
        details={"phone": phone, "created": created, "source": source},
    )
    return user, created
