# api/auth.py
"""
HTTP endpoints for signup, login, OTP, sessions and password reset.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.gateway import AuthGateway
from ..auth.middleware import get_auth_context, get_auth_gateway, get_current_user
from ..auth.rate_limiting import client_ip_key, phone_key, rate_limit, user_key
from ..auth.schemas import (
    ForgotPasswordRequest,
    ForgotPasswordVerifyRequest,
    LoginRequest,
    ResetPasswordRequest,
    SendOTPRequest,
    SignupRequest,
    VerifyOTPRequest,
)
from ..auth.session_management import AuthContext
from ..auth.users import User
from ..db import get_db

router = APIRouter(prefix="/auth", tags=["auth"])


def envelope(message: str, data: Optional[Any] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": "success", "message": message}
    if data is not None:
        body["data"] = data
    return body


@router.post("/signup")
@rate_limit("signup", key_func=client_ip_key)
async def signup(
    request: Request,
    response: Response,
    payload: SignupRequest,
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    """Stage a signup and send a verification code."""
    data = await gateway.signup(db, request, payload)
    return envelope("OTP sent to your mobile number. Please verify to complete signup.", data)


@router.post("/send-otp")
@rate_limit("otp_request", key_func=phone_key)
async def send_otp(
    request: Request,
    response: Response,
    payload: SendOTPRequest,
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    data = await gateway.send_otp(db, request, payload)
    return envelope("OTP sent successfully to your mobile number.", data)


@router.post("/resend-otp")
@rate_limit("otp_request", key_func=phone_key)
async def resend_otp(
    request: Request,
    response: Response,
    payload: SendOTPRequest,
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    data = await gateway.resend_otp(db, request, payload)
    return envelope("OTP resent successfully.", data)


@router.post("/verify-otp")
@rate_limit("otp_verify", key_func=phone_key)
async def verify_otp(
    request: Request,
    response: Response,
    payload: VerifyOTPRequest,
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    """Verify the code and create the staged account."""
    data = await gateway.verify_signup(db, request, payload)
    return envelope("Phone verified. Account created successfully.", data)


@router.post("/login")
async def login(
    request: Request,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    """Password login. Rate limiting and lockout are applied inside the flow so every attempt is audited."""
    data = await gateway.login(db, request, payload)
    return envelope("Login successful", data)


@router.post("/refresh")
@rate_limit("refresh", key_func=user_key)
async def refresh(
    request: Request,
    response: Response,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    data = await gateway.refresh(db, request, auth)
    return envelope("Token refreshed successfully", data)


@router.post("/logout")
async def logout(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    await gateway.logout(db, request, auth)
    return envelope("Logged out successfully")


@router.post("/logout-all")
async def logout_all(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    count = await gateway.logout_all(db, request, auth)
    return envelope(f"Logged out from {count} device(s)", {"revokedCount": count})


@router.get("/sessions")
async def list_sessions(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    sessions = await gateway.list_sessions(db, auth)
    return envelope("Active sessions", {"sessions": sessions, "total": len(sessions)})


@router.delete("/sessions/{session_id}")
async def revoke_session(
    session_id: int,
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    data = await gateway.revoke_session(db, request, auth, session_id)
    return envelope("Session revoked successfully", data)


@router.post("/forgot-password")
@rate_limit("password_reset", key_func=phone_key)
async def forgot_password(
    request: Request,
    response: Response,
    payload: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    data = await gateway.forgot_password(db, request, payload)
    return envelope("OTP sent to your mobile number", data)


@router.post("/forgot-password/verify")
@rate_limit("otp_verify", key_func=phone_key)
async def forgot_password_verify(
    request: Request,
    response: Response,
    payload: ForgotPasswordVerifyRequest,
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    data = await gateway.forgot_password_verify(db, request, payload)
    return envelope("OTP verified", data)


@router.post("/forgot-password/reset")
@rate_limit("password_reset", key_func=phone_key)
async def reset_password(
    request: Request,
    response: Response,
    payload: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    """Reset the password with a reset token; every existing session is revoked."""
    data = await gateway.reset_password(db, request, payload)
    return envelope("Password has been reset successfully. Please login again with your new password.", data)


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return envelope("Current user", {"user": user.public_dict()})
