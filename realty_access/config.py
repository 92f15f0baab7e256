"""Configuration settings for realty-access"""

from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    # Hosting platforms may provide PORT dynamically
    PORT: int = int(os.getenv("PORT", "8000"))

    # JWT
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "realty-access"
    JWT_AUDIENCE: str = "realty-crm"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Password hashing cost; tests lower it
    BCRYPT_ROUNDS: int = 12

    # Database
    # Runtime may provide DATABASE_URL
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./realty_access.db")

    # Redis (rate limiting only)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Rate limiting: "<requests>/<seconds>" per route policy
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_LOGIN: str = "10/60"
    RATE_LIMIT_REFRESH: str = "10/60"
    RATE_LIMIT_LOGOUT: str = "10/60"
    RATE_LIMIT_ME: str = "30/60"
    RATE_LIMIT_CHECK: str = "200/60"  # Called by the CRM on every request
    RATE_LIMIT_REGISTER: str = "3/60"
    RATE_LIMIT_INVITATION_CREATE: str = "10/60"
    RATE_LIMIT_INVITATION_VALIDATE: str = "20/60"
    RATE_LIMIT_INVITATION_ACCEPT: str = "5/60"

    # Authorization core
    PERMISSION_CACHE_TTL_SECONDS: int = 300  # upper bound on permission staleness
    INVITATION_EXPIRY_DAYS: int = 7
    SEED_DEFAULT_ROLES: bool = True

    # Notifications (fire-and-forget)
    NOTIFIER_URL: str = ""
    NOTIFIER_API_KEY: str = ""
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "noreply@realty-crm.local")
    FRONTEND_URL: str = "http://localhost:3000"  # Frontend URL for invitation links

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
