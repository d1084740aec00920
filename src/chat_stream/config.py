from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    REDIS_URL: str = "redis://localhost:6379/0"
    GUEST_STORAGE: Literal["memory", "redis"] = "redis"
    GUEST_KEY_PREFIX: str = "chat_stream:guest"
    GUEST_TTL_SECONDS: int | None = None

    JWT_SECRET: str = ""
    JWT_VERIFY_MODE: Literal["hs256", "jwks"] = "hs256"
    JWT_ALGORITHM: str = "HS256"
    JWKS_URL: str | None = None
    JWT_AUDIENCE: str | None = None

    CORS_ORIGINS: list[str] = ["*"]
    WS_HEARTBEAT_SECONDS: int = 30

    BACKEND_URL: str = "http://localhost:8080"
    BACKEND_CHAT_PATH: str = "/api/chat"
    CONNECT_IDLE_TIMEOUT_SECONDS: float = 30.0
    STREAM_IDLE_TIMEOUT_SECONDS: float = 120.0
    CONNECT_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 0.5
    RETRY_MAX_DELAY_SECONDS: float = 10.0

    SSE_MAX_BUFFER_BYTES: int = 1024 * 1024

    MESSAGE_MAX_LENGTH: int = 50_000
    MESSAGE_CONTEXT: int = 10
    TITLE_PREVIEW_LENGTH: int = 50
    MESSAGE_PREVIEW_LENGTH: int = 100

    TYPEWRITER_TICK_SECONDS: float = 0.03
    TYPEWRITER_CHARS_PER_TICK: int = 2
    TYPEWRITER_MAX_LAG_TICKS: int = 20
    TYPEWRITER_INSTANT_THRESHOLD: int = 4000

    SCROLL_NEAR_BOTTOM_POINTER_PX: float = 100.0
    SCROLL_NEAR_BOTTOM_TOUCH_PX: float = 150.0
    SCROLL_USER_MESSAGE_PADDING_PX: float = 100.0
    SCROLL_USER_DEBOUNCE_SECONDS: float = 0.1

    DRAFT_RELEASE_ON_CANCEL: bool = True
    ARCHIVE_ON_NEW_CONVERSATION: bool = True

    ATTACHMENT_MAX_MB: int = 15
    ATTACHMENT_TYPES: list[str] = [
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
        "text/csv",
        "application/pdf",
        "image/jpeg",
        "image/png",
        "text/plain",
    ]

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def backend_chat_url(self) -> str:
        return self.BACKEND_URL.rstrip("/") + self.BACKEND_CHAT_PATH

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
