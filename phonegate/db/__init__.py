"""
Database module: async engine, sessions and the declarative base.
"""
from sqlalchemy.orm import Mapped, mapped_column

from .models.base import Base, TimestampMixin
from .session import Database, get_db
from .exceptions import DatabaseError, ConnectionError

__all__ = [
    "Base", "TimestampMixin", "Mapped", "mapped_column",
    "Database", "get_db",
    "DatabaseError", "ConnectionError",
]
