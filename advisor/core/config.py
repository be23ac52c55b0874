"""
Advisor Configuration

All settings come from environment variables or a .env file. Stage budgets
and thresholds are read once per process through the cached `settings`.
"""
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Advisor settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Coverage Advisor"
    APP_ENV: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False
    ADVISOR_NAME: str = "Sam"

    # Policy store; in-memory in development
    REDIS_URL: str = "redis://localhost:6379/0"

    # Read-only SQL tool transport; empty disables it
    TOOL_DATABASE_URL: str = ""

    # Ratebook JSON; empty uses the packaged advisor/data/ratebook.json
    RATEBOOK_PATH: str = ""

    # LLM provider
    LLM_PROVIDER: Literal["bedrock", "ollama"] = "ollama"

    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    BEDROCK_MODEL_ID: str = "anthropic.claude-3-sonnet-20240229-v1:0"

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3"

    # Temperature and output tokens per upstream call
    CLASSIFIER_TEMPERATURE: float = 0.1
    CLASSIFIER_MAX_TOKENS: int = 128
    DRAFT_TEMPERATURE: float = 0.3
    DRAFT_MAX_TOKENS: int = 4096
    REVIEW_TEMPERATURE: float = 0.1
    REVIEW_MAX_TOKENS: int = 4096
    PRESENT_TEMPERATURE: float = 0.7
    PRESENT_MAX_TOKENS: int = 4096
    DATA_LOOKUP_TEMPERATURE: float = 0.2
    DATA_LOOKUP_MAX_TOKENS: int = 2048

    # Tool rounds per data lookup turn
    DATA_LOOKUP_MAX_ITERATIONS: int = 5

    # Upstream timeouts (seconds)
    CLASSIFIER_TIMEOUT_SECONDS: float = 10.0
    STAGE_TIMEOUT_SECONDS: float = 45.0

    # Routing
    FORK_CONFIDENCE_THRESHOLD: float = 0.9
    ESTIMATE_FRAMING_ENABLED: bool = False

    # LangFuse (optional)
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    LANGFUSE_HOST: str = "https://cloud.langfuse.com"

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Reject configurations the advisor cannot run with."""
        if self.APP_ENV != "development":
            if not self.REDIS_URL:
                raise ValueError(
                    "REDIS_URL is required outside development; policy records must survive restarts."
                )

            if self.DEBUG:
                import warnings
                warnings.warn(
                    "DEBUG mode is enabled in a non-development environment. "
                    "Prompts and model output will be logged.",
                    UserWarning,
                )

        if self.LLM_PROVIDER == "bedrock":
            if not self.AWS_ACCESS_KEY_ID or not self.AWS_SECRET_ACCESS_KEY:
                raise ValueError(
                    "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY are required when LLM_PROVIDER is 'bedrock'."
                )

        if not 0.0 <= self.FORK_CONFIDENCE_THRESHOLD <= 1.0:
            raise ValueError("FORK_CONFIDENCE_THRESHOLD must be between 0 and 1")

        for name in ("CLASSIFIER_TIMEOUT_SECONDS", "STAGE_TIMEOUT_SECONDS", "DATA_LOOKUP_MAX_ITERATIONS"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        return self

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
