"""
Configuration module for the QnA bot

This module handles all configuration settings including environment variables,
the knowledge base source, matching thresholds and storage selection using
Pydantic Settings.
"""

from typing import List, Literal
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings and configuration."""

    # Knowledge Base Configuration
    knowledge_base_path: str = Field(default="./data/knowledge_base.json")
    min_confidence: float = Field(default=0.5, description="Minimum score for an answer to be emitted")
    max_results: int = Field(default=3, ge=1, le=50)

    # Scorer Selection
    scorer_backend: Literal["lexical", "fuzzy", "sentence-transformers"] = Field(default="lexical")
    embedding_model_name: str = Field(default="sentence-transformers/all-MiniLM-L6-v2")

    # Conversation State Storage
    storage_backend: Literal["memory", "file"] = Field(default="memory")
    storage_directory: str = Field(default="./data/conversations")

    # Bot Responses
    fallback_message: str = Field(default="Sorry, I couldn't find an answer to that question.")
    apology_message: str = Field(default="Something went wrong. Please forgive me.")
    include_error_detail: bool = Field(default=False)
    turn_timeout_seconds: float = Field(default=10.0, gt=0)

    # Application Configuration
    environment: str = Field(default="development")
    app_host: str = Field(default="0.0.0.0")
    app_port: int = Field(default=8000)
    debug: bool = Field(default=False)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # API Configuration
    api_title: str = Field(default="QnA Bot API")
    api_description: str = Field(default="Knowledge base question answering with multi-turn follow-up prompts")
    api_version: str = Field(default="1.0.0")

    # CORS Configuration
    allowed_origins: List[str] = Field(default=["http://localhost:3000"])

    model_config = SettingsConfigDict(
        env_prefix="QNABOT_",
        protected_namespaces=(),
    )

    @field_validator("min_confidence")
    @classmethod
    def validate_min_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("min_confidence must be between 0 and 1")
        return v


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
