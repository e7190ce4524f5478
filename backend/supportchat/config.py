from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application configuration using environment variables."""

    # Application
    APP_NAME: str = "Support Chat Service"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Session tokens issued by the tenant directory
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24 hours

    # Database
    DATABASE_URL: str = "sqlite:///./supportchat.db"

    # CORS
    CORS_ORIGINS: list = ["http://localhost:3000", "http://localhost:5173"]

    # Attachments
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_SIZE: int = 50 * 1024 * 1024  # 50MB
    MAX_ATTACHMENTS_PER_MESSAGE: int = 5

    # Paging and search limits
    MESSAGE_PAGE_SIZE: int = 50
    MAX_MESSAGE_PAGE_SIZE: int = 200
    CONVERSATION_PAGE_SIZE: int = 20
    MESSAGE_SEARCH_LIMIT: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
