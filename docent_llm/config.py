"""Configuration settings for the docent LLM service using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DOCENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Host to bind to")
    port: int = Field(default=8002, description="Port to bind to")

    # Model settings
    model_path: str | None = Field(
        default=None,
        description="Path to the GGUF model file (loaded at startup when set)",
    )
    artwork_metadata_path: str | None = Field(
        default=None,
        description="JSON file with artwork metadata used to prime the system prompt",
    )

    # Session bundle (fixed at init time)
    max_context_tokens: int = Field(
        default=2048,
        ge=1,
        description="Token capacity of the execution context",
    )
    max_batch_tokens: int = Field(
        default=512,
        ge=1,
        description="Maximum tokens pushed through one decode call",
    )
    decode_threads: int = Field(
        default=4,
        ge=1,
        description="Decode worker threads",
    )

    # Sampler chain: min-p -> temperature -> seeded draw
    min_p: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Minimum probability mass filter",
    )
    min_keep: int = Field(
        default=1,
        ge=1,
        description="Minimum candidates kept by the min-p filter",
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    seed: int = Field(
        default=42,
        ge=0,
        description="Seed of the final categorical draw",
    )

    # Generation
    max_new_tokens: int = Field(
        default=512,
        ge=1,
        description="Upper bound on generated tokens per answer",
    )
    stop_sequences: list[str] = Field(
        default_factory=lambda: ["<|im_start|>", "<|im_end|>"],
        description="Literal strings that end generation once streamed",
    )
    stop_window_chars: int = Field(
        default=64,
        ge=1,
        description="Trailing characters retained for stop-sequence matching",
    )

    # Observability
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "console"] = Field(
        default="json",
        description="Log renderer: JSON lines or human-readable console output",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Export a default instance for convenience
settings = get_settings()
