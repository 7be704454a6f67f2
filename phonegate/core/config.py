# core/config.py
"""
Configuration settings for phonegate.
"""
from typing import List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Centralized application settings.
    All settings can be overridden by environment variables or a .env file.
    """
    # --- Application ---
    APP_NAME: str = "phonegate"
    DEBUG: bool = False
    API_V1_STR: str = "/api/v1"
    ENV: str = "development"

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./phonegate.db"
    ECHO_SQL: bool = False
    AUTO_CREATE_TABLES: bool = True

    # --- Security & Auth ---
    SECRET_KEY: str = "your-secret-key-change-this-in-production!"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    BCRYPT_ROUNDS: int = 12

    # --- OTP ---
    OTP_LENGTH: int = 6
    OTP_EXPIRE_SECONDS: int = 300
    OTP_MAX_ATTEMPTS: int = 5
    OTP_LOCKOUT_SECONDS: int = 900
    OTP_DELIVERY_TIMEOUT: float = 10.0

    # --- Transient sessions ---
    PENDING_SIGNUP_EXPIRE_SECONDS: int = 600
    PASSWORD_RESET_EXPIRE_SECONDS: int = 600

    # --- Rate limits (requests, window seconds) ---
    LOGIN_RATE_LIMIT: int = 10
    LOGIN_RATE_WINDOW: int = 900
    SIGNUP_RATE_LIMIT: int = 3
    SIGNUP_RATE_WINDOW: int = 3600
    OTP_REQUEST_RATE_LIMIT: int = 5
    OTP_REQUEST_RATE_WINDOW: int = 900
    OTP_VERIFY_RATE_LIMIT: int = 10
    OTP_VERIFY_RATE_WINDOW: int = 900
    PASSWORD_RESET_RATE_LIMIT: int = 3
    PASSWORD_RESET_RATE_WINDOW: int = 3600
    REFRESH_RATE_LIMIT: int = 20
    REFRESH_RATE_WINDOW: int = 900

    # --- Login lockout ---
    LOGIN_FAILURE_WINDOW_MINUTES: int = 30
    LOGIN_IP_FAILURE_THRESHOLD: int = 15
    LOGIN_PHONE_FAILURE_THRESHOLD: int = 10

    # --- Bootstrap admin (provisioning only, never a login bypass) ---
    PROVISION_ADMIN_ON_STARTUP: bool = False
    SUPERUSER_PHONE: Optional[str] = None
    SUPERUSER_PASSWORD: Optional[str] = None
    SUPERUSER_NAME: str = "Administrator"
    SUPERUSER_EMAIL: str = "admin@example.com"

    # --- Code delivery ---
    SMS_GATEWAY_URL: Optional[str] = None
    SMS_GATEWAY_API_KEY: Optional[str] = None
    SMS_SENDER_ID: str = "PHNGTE"

    # --- Cache / transient store ---
    CACHE_BACKEND: str = "memory"  # Options: memory, redis
    REDIS_URL: Optional[str] = None
    CACHE_KEY_PREFIX: str = "phonegate:"
    CACHE_CLEANUP_INTERVAL: int = 60

    # --- Maintenance ---
    CLEANUP_INTERVAL_SECONDS: int = 3600

    # --- Server ---
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    DOCS_ENABLED: bool = True
    RELOAD: bool = False
    WORKERS: int = 1

    # --- CORS ---
    CORS_ORIGINS: List[str] = ["*"]

    @field_validator("SECRET_KEY")
    def validate_secret_key(cls, v):
        if v == "your-secret-key-change-this-in-production!":
            import warnings
            warnings.warn("Using default SECRET_KEY in production is insecure!")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("CACHE_BACKEND")
    def validate_cache_backend(cls, v):
        if v not in ("memory", "redis"):
            raise ValueError("CACHE_BACKEND must be 'memory' or 'redis'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
