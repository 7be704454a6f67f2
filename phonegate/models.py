"""Every table, imported in one place so metadata is complete before create_all."""
from .auth.audit import LoginAttempt, SecurityEvent
from .auth.blocklist import BlockedIdentifier
from .auth.session_management import UserSession
from .auth.token_blacklist import TokenBlacklist
from .auth.users import User

__all__ = ["BlockedIdentifier", "LoginAttempt", "SecurityEvent", "TokenBlacklist", "User", "UserSession"]
