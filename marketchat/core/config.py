from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "marketchat"

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    MONGO_DB: str = "marketchat"

    # Bearer tokens are minted by the account service; we only verify them
    JWT_SECRET: str = "change-me-before-deploying-marketchat"
    JWT_ALGORITHM: str = "HS256"

    # Optional Redis fanout for running several API processes
    REDIS_URL: Optional[str] = None
    PRESENCE_TTL_SECONDS: int = 60

    CONVERSATION_PAGE_LIMIT: int = 50

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
