"""Application configuration settings."""
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import List, Optional

# Get the server directory path
SERVER_DIR = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase
    SUPABASE_URL: str
    SUPABASE_KEY: str

    # LLM Configuration
    USE_CLOUD_LLM: bool = False
    OLLAMA_ENDPOINT: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1:8b"
    EMBEDDING_MODEL: str = "nomic-embed-text"
    LLM_API_KEY: Optional[str] = None

    # Per-phase LLM timeouts (seconds)
    LLM_INTENT_TIMEOUT: int = 20
    LLM_PLANNING_TIMEOUT: int = 15
    LLM_RESPONSE_TIMEOUT: int = 15
    LLM_EMBEDDING_TIMEOUT: int = 10

    # Planner
    USE_LLM_PLANNER: bool = False
    PLANNER_MIN_CONFIDENCE: float = 0.7

    # Search ladder tuning
    SEARCH_LIMIT: int = 20
    FUZZY_STRICT_THRESHOLD: float = 0.3
    FUZZY_LOOSE_THRESHOLD: float = 0.15
    FALLBACK_RESTAURANT_LIMIT: int = 5
    RESTAURANT_SEARCH_LIMIT: int = 10

    # Result cards
    MAX_RESTAURANTS: int = 8
    MAX_DISHES_PER_RESTAURANT: int = 4
    MENU_PAGE_SIZE: int = 10

    # Locale
    DEFAULT_TIMEZONE: str = "Europe/Stockholm"
    CURRENCY_LABEL: str = "kr"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS — explicit list of allowed origins
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
    ]

    @model_validator(mode="after")
    def _validate_search_tuning(self) -> "Settings":
        if self.FUZZY_LOOSE_THRESHOLD > self.FUZZY_STRICT_THRESHOLD:
            raise ValueError(
                "FUZZY_LOOSE_THRESHOLD must not exceed FUZZY_STRICT_THRESHOLD. "
                "Step D of the search ladder has to be at least as permissive as step C."
            )
        for name in ("MAX_RESTAURANTS", "MAX_DISHES_PER_RESTAURANT", "MENU_PAGE_SIZE", "SEARCH_LIMIT"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be a positive integer")
        return self

    class Config:
        env_file = str(SERVER_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
