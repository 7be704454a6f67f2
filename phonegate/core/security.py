"""
Security primitives: password hashing and signed session tokens.
"""
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

from .config import Settings, settings as default_settings


class PasswordHasher:
    """Slow, salted password hashing backed by passlib's bcrypt."""

    def __init__(self, rounds: int = 12):
        self.context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    async def hash(self, password: str) -> str:
        return await run_in_threadpool(self.context.hash, password)

    async def verify(self, password: str, hashed_password: str) -> bool:
        if not hashed_password:
            return False
        return await run_in_threadpool(self.context.verify, password, hashed_password)


@dataclass
class IssuedToken:
    """A freshly minted token together with its identifying claims."""
    token: str
    jti: str
    expires_at: datetime


class TokenCodec:
    """Encode and decode HS256 session tokens.

    Every token carries the user id, a unique ``jti`` so it can be revoked
    individually, and an expiry.
    """

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or default_settings
        self.secret_key = settings.SECRET_KEY
        self.algorithm = settings.ALGORITHM
        self.lifetime = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    @staticmethod
    def new_jti() -> str:
        return secrets.token_hex(16)

    def encode(self, user_id: int, role: str, issued_at: datetime) -> IssuedToken:
        jti = self.new_jti()
        expires_at = issued_at + self.lifetime
        to_encode: Dict[str, Any] = {
            "sub": str(user_id),
            "user_id": user_id,
            "role": role,
            "jti": jti,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)
        return IssuedToken(token=token, jti=jti, expires_at=expires_at)

    def decode(self, token: str) -> Dict[str, Any]:
        """Decode and validate a token.

        Raises:
            TokenInvalidError: bad signature, expired or missing claims.
        """
        from ..auth.errors import TokenInvalidError

        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenInvalidError("Token has expired")
        except JWTError:
            raise TokenInvalidError("Invalid token")

        if not payload.get("jti") or payload.get("user_id") is None:
            raise TokenInvalidError("Invalid token payload")
        return payload
