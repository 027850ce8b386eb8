from typing import List, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process configuration, read once from the environment (or .env).

    CHATBASE_BOT_ID and CHATBASE_API_KEY have no default, so building a
    Settings without them raises a ValidationError and the app refuses to start.
    """

    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # Upstream
    CHATBASE_BOT_ID: str
    CHATBASE_API_KEY: SecretStr
    CHATBASE_API_URL: str = "https://www.chatbase.co/api/v1/chat"
    CHATBASE_TEMPERATURE: float = 0.7
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0

    # Rate limiting
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_PATH_PREFIX: str = "/api/chat"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    CORS_ORIGINS: List[str] = ["*"]
    MAX_BODY_BYTES: int = 10 * 1024 * 1024
    STATIC_DIR: Optional[str] = "public"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )


def get_settings() -> Settings:
    return Settings()
