"""
Core configuration and security primitives.
"""
from .config import Settings, settings
from .security import IssuedToken, PasswordHasher, TokenCodec

__all__ = ["Settings", "settings", "IssuedToken", "PasswordHasher", "TokenCodec"]
