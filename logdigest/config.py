"""
LogDigest - Service Configuration
=================================

Centralized configuration using Pydantic Settings.
"""

from functools import lru_cache
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings


class LLMProvider(str, Enum):
    """Available completion providers."""
    MOCK = "mock"       # Deterministic offline responses for development/testing
    OPENAI = "openai"   # Any OpenAI-compatible /chat/completions endpoint


class TokenizerBackend(str, Enum):
    """Available token estimators."""
    TIKTOKEN = "tiktoken"        # Exact BPE counts via tiktoken
    APPROXIMATE = "approximate"  # Roughly four characters per token, no downloads


class RegexpFilterConfig(BaseModel):
    """Exclusion patterns for one container's log lines."""

    enabled: bool = Field(
        default=True,
        description="Whether the patterns are applied"
    )
    patterns: list[str] = Field(
        default_factory=list,
        description="Regular expressions; a line matching any of them is dropped"
    )


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # Service identification
    service_name: str = Field(
        default="logdigest",
        description="Name of this service"
    )
    service_version: str = Field(
        default="0.1.0",
        description="Semantic version"
    )

    # Server configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8010)
    debug: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    # LLM configuration
    llm_provider: LLMProvider = Field(
        default=LLMProvider.MOCK,
        description="Completion provider to use (mock, openai)"
    )
    llm_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible API"
    )
    llm_api_key: Optional[str] = Field(
        default=None,
        description="API key sent as a Bearer token"
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model name sent with every request"
    )
    llm_context_tokens: int = Field(
        default=128000,
        description="Context window of the model, used for token budgeting"
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Sampling temperature"
    )
    llm_analysis_max_tokens: int = Field(
        default=4000,
        description="Completion limit for analysis and synthesis requests"
    )
    llm_chunk_max_tokens: int = Field(
        default=2000,
        description="Completion limit for chunk summarization requests"
    )
    llm_timeout_seconds: float = Field(
        default=120.0,
        description="Timeout for a single completion request"
    )
    llm_max_retries: int = Field(
        default=3,
        description="Attempts per completion request on transport errors and 5xx"
    )

    # Model interaction log
    llm_log_enabled: bool = Field(
        default=False,
        description="Write every completion request and response to Markdown files"
    )
    llm_log_dir: str = Field(
        default="./logs/llm",
        description="Directory for interaction logs, one subdirectory per container"
    )

    # Token estimation
    tokenizer_backend: TokenizerBackend = Field(
        default=TokenizerBackend.TIKTOKEN,
        description="Token estimator to use (tiktoken, approximate)"
    )

    # Prompt overrides (empty = built-in templates)
    system_prompt_path: str = Field(default="")
    analysis_prompt_path: str = Field(default="")
    chunk_summary_prompt_path: str = Field(default="")
    synthesis_prompt_path: str = Field(default="")
    ignore_dir: str = Field(
        default="./config/ignore",
        description="Directory holding <container>.md ignore instructions"
    )

    # Per-container line filters, e.g.
    # REGEXP_FILTERS='{"web": {"patterns": ["GET /health"]}}'
    regexp_filters: dict[str, RegexpFilterConfig] = Field(
        default_factory=dict,
        description="Exclusion patterns keyed by container name"
    )

    @model_validator(mode="after")
    def _check_llm(self) -> "Settings":
        if self.llm_context_tokens <= 0:
            raise ValueError("llm_context_tokens must be positive")
        if self.llm_provider == LLMProvider.OPENAI and not (self.llm_api_key or "").strip():
            raise ValueError("llm_api_key is required when llm_provider is 'openai'")
        return self

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
