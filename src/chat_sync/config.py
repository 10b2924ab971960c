from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    CHAT_API_URL: str = "http://localhost:5000/api/chat"
    CHAT_WS_URL: str = "ws://localhost:5000/ws/chat"

    REST_TIMEOUT_SECONDS: float = 10.0
    CONVERSATIONS_PAGE_SIZE: int = 20
    HISTORY_PAGE_SIZE: int = 50
    DEDUP_WINDOW: int = 256

    TYPING_THROTTLE_SECONDS: float = 2.0
    TYPING_IDLE_SECONDS: float = 2.0
    TYPING_EXPIRY_SECONDS: float = 3.0

    WS_OPEN_TIMEOUT_SECONDS: float = 10.0
    WS_PING_INTERVAL_SECONDS: float = 30.0

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
