

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""


    app_name: str = "Lead Scoring Engine"
    app_version: str = "1.0.0"
    debug: bool = False


    llm_provider: str = "openai"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:3b"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 1200

    # Total deadline per reasoning call, and the bound on each single attempt
    llm_timeout: float = 30.0
    llm_attempt_timeout: float = 20.0
    llm_max_retries: int = 3
    llm_backoff_min: float = 1.0
    llm_backoff_max: float = 8.0


    contact_timezone: str = "Asia/Kolkata"
    batch_max_concurrency: int = 3
    fallback_scoring_enabled: bool = False


    database_url: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
