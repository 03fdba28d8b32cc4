"""
Configuration Settings

Environment variables and application configuration.
Includes LangSmith tracing setup for agent observability.
"""

import os
import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env", "../../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App settings
    app_name: str = "BrandForge Agent API"
    app_version: str = "1.0.0"
    debug: bool = True

    # API settings
    api_prefix: str = "/api/v1"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Accept comma-separated string or list for CORS origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Google AI
    google_api_key: str = ""
    # Agent loop (function calling + thinking)
    agent_model_name: str = "gemini-3-flash-preview"
    # Style extraction, compliance audit, prompt refinement
    analysis_model_name: str = "gemini-3-flash-preview"
    # Image generation
    image_model_name: str = "gemini-3-pro-image-preview"

    # Agent loop limits
    max_iterations: int = 8
    max_attempts: int = 3
    max_tool_calls_per_turn: int = 6
    pass_threshold: float = 90.0

    # Timeouts (seconds) for every remote call
    text_timeout_seconds: float = 60.0
    image_timeout_seconds: float = 180.0
    search_timeout_seconds: float = 30.0

    # Backoff
    turn_retry_attempts: int = 3
    tool_retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 20.0

    # Progress events
    progress_max_string_length: int = 100

    # Contextual search (SerpAPI); falls back to Gemini grounding when empty
    serpapi_key: str = ""

    # LangSmith Tracing
    langchain_tracing_v2: bool = True
    langchain_api_key: str = ""
    langchain_project: str = "brandforge-agent"
    langchain_endpoint: str = "https://api.smith.langchain.com"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def setup_langsmith() -> bool:
    """
    Setup LangSmith tracing environment variables.

    Call this at application startup to enable tracing.
    Returns True if tracing is enabled, False otherwise.
    """
    settings = get_settings()

    if settings.langchain_api_key and settings.langchain_tracing_v2:
        os.environ["LANGCHAIN_TRACING_V2"] = "true"
        os.environ["LANGCHAIN_API_KEY"] = settings.langchain_api_key
        os.environ["LANGCHAIN_PROJECT"] = settings.langchain_project
        os.environ["LANGCHAIN_ENDPOINT"] = settings.langchain_endpoint

        logger.info(
            "[Config] LangSmith tracing enabled (project=%s, endpoint=%s)",
            settings.langchain_project,
            settings.langchain_endpoint,
        )
        return True

    logger.warning("[Config] LangSmith tracing NOT configured; set LANGCHAIN_API_KEY in .env")
    return False
