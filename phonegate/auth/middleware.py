# auth/middleware.py
"""
Per-request token verification, exposed as FastAPI dependencies.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from .errors import TokenInvalidError
from .gateway import AuthGateway
from .session_management import AuthContext
from .users import User

bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_gateway(request: Request) -> AuthGateway:
    return request.app.state.auth_gateway


async def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Verify the bearer token: signature and expiry, blacklist, then session.

    The resolved context is also attached to ``request.state.auth``.
    """
    if credentials is None or not credentials.credentials:
        raise TokenInvalidError(
            "Access denied. No token provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    gateway = get_auth_gateway(request)
    auth = await gateway.sessions.verify_incoming(db, credentials.credentials)
    request.state.auth = auth
    return auth


async def get_current_user(auth: AuthContext = Depends(get_auth_context)) -> User:
    return auth.user
