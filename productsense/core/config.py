"""Application configuration with environment variables."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./product_sense.db"

    # JWT Settings
    SECRET_KEY: str = "your-secret-key-change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 days

    # Application
    APP_NAME: str = "Product Sense Trainer"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    SEED_CATALOG_ON_STARTUP: bool = True

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # OpenAI (scoring judge); leave unset to use the offline heuristic judge
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    SCORING_TIMEOUT_SECONDS: float = 60.0

    # Prompt selection; set for reproducible prompt picks
    PROMPT_SELECTION_SEED: Optional[int] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create global settings instance
settings = Settings()
