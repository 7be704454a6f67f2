# auth/notifier.py
"""
Hooks through which the auth flows tell the rest of the system about new
users and sessions.
"""
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session_management import UserSession
    from .users import User

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Receives auth events for fan-out (welcome messages, new-device alerts)."""

    @abstractmethod
    async def user_registered(self, user: "User") -> None:
        ...

    @abstractmethod
    async def session_created(self, user: "User", session: "UserSession") -> None:
        ...


class LoggingNotifier(Notifier):
    """Default notifier: just logs."""

    async def user_registered(self, user: "User") -> None:
        logger.info(f"New {user.role} registered: {user.id}")

    async def session_created(self, user: "User", session: "UserSession") -> None:
        logger.info(f"New session {session.id} for user {user.id} on {session.device_type}")
