"""Application settings using Pydantic."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ollama LLM Configuration
    llm_ollama_base_url: str = "http://localhost:11434"
    llm_model_name: str = "gpt-oss:20b"
    llm_temperature: float = 0.0
    llm_request_timeout: int = 120  # Per inference call, not per run
    llm_num_ctx: int = 8192
    llm_num_predict: int = 4096

    # Token accounting
    token_encoding_name: str = "cl100k_base"
    cost_per_1k_prompt_tokens: float = 0.0
    cost_per_1k_completion_tokens: float = 0.0

    # Stage retry policy
    stage_max_attempts: int = 3
    retry_backoff_multiplier: float = 1.0
    retry_backoff_min_seconds: float = 2.0
    retry_backoff_max_seconds: float = 30.0

    # Prompt shaping
    classification_excerpt_chars: int = 4000
    speaker_utterance_limit: int = 30
    max_transcript_chars: int = 24000

    # Validation thresholds (0-100 scale)
    rate_confirmation_carrier_confidence: int = 70
    agreed_rate_min_confidence: int = 70
    position_discrepancy_percent: float = 20.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
