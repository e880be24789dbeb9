"""Configuration settings for the userauth API."""

import os
import secrets
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = _env_bool("DEBUG")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./userauth.db")

    # Tokens
    ACCESS_TOKEN_SECRET: str = os.getenv("ACCESS_TOKEN_SECRET", "")
    REFRESH_TOKEN_SECRET: str = os.getenv("REFRESH_TOKEN_SECRET", "")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))

    # Passwords
    BCRYPT_ROUNDS: int = max(10, int(os.getenv("BCRYPT_ROUNDS", "12")))

    # Mail
    MAIL_BACKEND: str = os.getenv("MAIL_BACKEND", "console")
    MAIL_FROM: str = os.getenv("MAIL_FROM", "no-reply@localhost")
    SMTP_HOST: str = os.getenv("SMTP_HOST", "localhost")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME: str = os.getenv("SMTP_USERNAME", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    SMTP_USE_TLS: bool = _env_bool("SMTP_USE_TLS", "true")
    SMTP_TIMEOUT_SECONDS: int = int(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))

    # Links embedded in emails
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8000").rstrip("/")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

    # Upload
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
    MAX_IMAGE_SIZE_MB: int = int(os.getenv("MAX_IMAGE_SIZE_MB", "5"))

    def __init__(self) -> None:
        # Outside production a missing secret falls back to a per-process random key.
        if not self.is_production:
            if not self.ACCESS_TOKEN_SECRET:
                self.ACCESS_TOKEN_SECRET = secrets.token_urlsafe(32)
            if not self.REFRESH_TOKEN_SECRET:
                self.REFRESH_TOKEN_SECRET = secrets.token_urlsafe(32)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if not os.getenv("ACCESS_TOKEN_SECRET"):
            errors.append("ACCESS_TOKEN_SECRET is not set - access tokens cannot be issued in production")
        if not os.getenv("REFRESH_TOKEN_SECRET"):
            errors.append("REFRESH_TOKEN_SECRET is not set - refresh tokens do not survive restarts")
        if self.ACCESS_TOKEN_SECRET and self.ACCESS_TOKEN_SECRET == self.REFRESH_TOKEN_SECRET:
            errors.append("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET should differ")
        if self.MAIL_BACKEND not in ("console", "smtp"):
            errors.append(f"Unknown MAIL_BACKEND '{self.MAIL_BACKEND}' - falling back to console")
        if self.is_production and self.MAIL_BACKEND != "smtp":
            errors.append("Console mail backend in production - emails are not sent and tokens are written to the log")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
