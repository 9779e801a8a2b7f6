from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    AI_DESIGNER_DB_URL: str = "sqlite:///./ai_designer.db"
    BACKEND_CORS_ORIGINS: list[str] = ["*"]
    AI_DESIGNER_HOST: str = "0.0.0.0"
    AI_DESIGNER_PORT: int = 8010

    # Env values only fill in what the platform_settings row leaves empty.
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1/chat/completions"
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_MODEL: str = "moonshotai/kimi-k2"
    OPENROUTER_FALLBACK_MODEL: str | None = None
    OPENROUTER_HTTP_REFERER: str = "https://yesgive.shop"
    OPENROUTER_APP_TITLE: str = "Vendy Buildr AI Designer"

    # Kept below the hosting platform's own request ceiling.
    LLM_REQUEST_TIMEOUT_SECONDS: float = 45.0
    LLM_HTTP_ATTEMPTS: int = 3
    LLM_RETRY_BACKOFF_SECONDS: float = 1.0

    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    RAZORPAY_KEY_ID: str | None = None
    RAZORPAY_KEY_SECRET: str | None = None
    PAYMENT_REQUEST_TIMEOUT_SECONDS: float = 20.0

    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    MAX_PROMPT_CHARS: int = 2000
    MAX_CONVERSATION_MESSAGES: int = 20

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("LLM_HTTP_ATTEMPTS")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("LLM_HTTP_ATTEMPTS must be at least 1")
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
