# auth/schemas.py
"""
Request models for the auth endpoints. Bodies may use snake_case or camelCase keys.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from .phone import is_valid_phone, normalize_phone

SignupRole = Literal["user", "provider"]
AnyRole = Literal["user", "provider", "admin"]


class AuthRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PhoneMixin(BaseModel):
    phone: str

    @field_validator("phone")
    def validate_phone(cls, v):
        phone = normalize_phone(v)
        if not is_valid_phone(phone):
            raise ValueError("Please enter a valid 10-digit mobile number")
        return phone


class OTPMixin(BaseModel):
    otp: str

    @field_validator("otp")
    def validate_otp(cls, v):
        if len(v) != 6 or not v.isdigit():
            raise ValueError("OTP must be 6 digits")
        return v


class SignupRequest(PhoneMixin, AuthRequest):
    full_name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    role: SignupRole = "user"
    profile_pic_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("full_name")
    def strip_full_name(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Full name must be at least 2 characters")
        return v

    @field_validator("email")
    def lowercase_email(cls, v):
        return v.lower()


class SendOTPRequest(PhoneMixin, AuthRequest):
    role: Optional[AnyRole] = None


class VerifyOTPRequest(PhoneMixin, OTPMixin, AuthRequest):
    role: Optional[SignupRole] = None


class LoginRequest(AuthRequest):
    # Phone is checked by the login flow so that malformed numbers are audited too
    phone: str = Field(min_length=1, max_length=32)
    password: str = Field(min_length=1, max_length=128)
    role: AnyRole = "user"


class ForgotPasswordRequest(PhoneMixin, AuthRequest):
    role: AnyRole = "user"


class ForgotPasswordVerifyRequest(PhoneMixin, OTPMixin, AuthRequest):
    role: AnyRole = "user"


class ResetPasswordRequest(PhoneMixin, AuthRequest):
    reset_token: str = Field(min_length=1)
    new_password: str = Field(min_length=6, max_length=128)
    role: AnyRole = "user"
