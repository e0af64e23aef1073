"""
Centralized Configuration System
Environment-aware settings for the qualification engine and its collaborators.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal, Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Production-grade configuration management.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # OPENAI CONFIGURATION
    # ============================================
    openai_api_key: str = ""

    # ============================================
    # MODEL SELECTION (by pipeline role)
    # ============================================
    intent_model: str = "openai:gpt-4o-mini"
    extraction_model: str = "openai:gpt-4o-mini"
    normalization_model: str = "openai:gpt-4o-mini"
    reply_model: str = "openai:gpt-4o-mini"

    # ============================================
    # MODEL GATEWAY
    # ============================================
    llm_timeout_seconds: float = 30.0
    chars_per_token_estimate: int = 4

    # ============================================
    # CONVERSATION RULES
    # ============================================
    history_window_size: int = 20   # Turns passed to the LLM as context
    sticky_intent_confidence: float = 0.75
    short_answer_max_words: int = 4
    default_currency: str = "PHP"
    default_phone_region: str = "PH"
    default_agent_name: str = "Leadify Assistant"

    # ============================================
    # COST CONTROLS & CALLER RETRIES
    # ============================================
    daily_cost_limit_usd: float = 100.0
    hourly_cost_limit_usd: float = 20.0
    max_retries: int = 3
    retry_min_wait_seconds: int = 2
    retry_max_wait_seconds: int = 10

    # ============================================
    # PERSISTENCE
    # ============================================
    persistence_backend: Literal["memory", "mongodb"] = "memory"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "leadify"
    mongodb_max_pool_size: int = 50
    mongodb_min_pool_size: int = 5
    mongodb_server_selection_timeout_ms: int = 5000

    # ============================================
    # OUTBOUND COLLABORATORS
    # ============================================
    slack_handoff_webhook_url: Optional[str] = None
    crm_webhook_url: Optional[str] = None
    crm_webhook_timeout_seconds: float = 10.0

    # ============================================
    # LOGGING
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "test", "staging", "production"] = "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()


# Convenience accessor for common use
settings = get_settings()
