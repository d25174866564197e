from typing import List, Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # =========================
    # Environment
    # =========================
    ENV: str = Field(default="dev")
    LOG_LEVEL: str = Field(default="INFO")

    # =========================
    # Listener
    # =========================
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=5000)

    # =========================
    # Runtime pin (checked before the listener starts)
    # =========================
    REQUIRED_RUNTIME_VERSION: str = Field(default="3.12.4")

    # =========================
    # CORS / hardening
    # "*" origin and no CSP are placeholders, tighten later
    # =========================
    CORS_ORIGIN: str = Field(default="*")
    CORS_METHODS: str = Field(default="GET,POST,PUT,DELETE")
    CONTENT_SECURITY_POLICY: str = Field(default="")

    # =========================
    # Rate limiting (fixed window)
    # =========================
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=10 * 60)
    RATE_LIMIT_MAX: int = Field(default=200)

    # Optional: counters live in-process unless set
    REDIS_URL: Optional[str] = Field(default=None)

    # =========================
    # Request body
    # =========================
    MAX_BODY_BYTES: int = Field(default=100 * 1024)

    # =========================
    # Upstream
    # =========================
    JOKE_API_URL: str = Field(
        default="https://official-joke-api.appspot.com/jokes/random"
    )

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    def cors_methods(self) -> List[str]:
        return [m.strip().upper() for m in self.CORS_METHODS.split(",") if m.strip()]


# Singleton
settings = Settings()
