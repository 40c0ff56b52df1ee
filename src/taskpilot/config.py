"""Configuration management for taskpilot."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskpilot.errors import InvalidModelFormatError, ModelNotConfiguredError

MODEL_NOT_CONFIGURED_ERROR = "Model not configured. Set TASKPILOT_MODEL (e.g., 'openai:gpt-4o-mini')."
AUDIT_FILE_NAME = "audit.jsonl"
OUTBOX_FILE_NAME = "outbox.jsonl"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TASKPILOT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Model
    model: str | None = Field(default=None, description="Model in provider:model form")
    api_key: str | None = Field(default=None, description="API key for the model provider")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    max_tokens: int = Field(default=1024, ge=1, description="Maximum tokens per model response")
    native_tools: bool = Field(default=False, description="Send tool schemas through the structured channel")

    # Loop
    max_iterations: int = Field(default=5, ge=1, description="Maximum model round-trips per task")
    empty_response_retries: int = Field(default=3, ge=1, description="Iteration bound for empty-response nudges")
    model_timeout_seconds: float = Field(default=60, gt=0, description="Timeout for one model call")
    tool_timeout_seconds: float = Field(default=30, gt=0, description="Timeout for one tool handler call")

    # Prompt context
    recent_actions_limit: int = Field(default=5, ge=0, description="Recent tasks shown to the model")
    known_users_limit: int = Field(default=20, ge=0, description="Known users shown to the model")

    # Storage
    home: Path = Field(default=Path.home() / ".taskpilot", description="State directory")
    users_file: Path | None = Field(default=None, description="JSON user directory")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    def resolve_home(self) -> Path:
        home = self.home.expanduser().resolve()
        home.mkdir(parents=True, exist_ok=True)
        return home

    @property
    def audit_path(self) -> Path:
        return self.resolve_home() / AUDIT_FILE_NAME

    @property
    def outbox_path(self) -> Path:
        return self.resolve_home() / OUTBOX_FILE_NAME

    def require_model(self) -> str:
        if not self.model:
            raise ModelNotConfiguredError(MODEL_NOT_CONFIGURED_ERROR)
        provider, separator, name = self.model.partition(":")
        if not separator or not provider or not name:
            raise InvalidModelFormatError(f"Model must be in provider:model form, got {self.model!r}")
        return self.model


def load_settings(**overrides: Any) -> Settings:
    """Load settings from the environment, applying non-empty overrides."""
    settings = Settings()
    updates = {key: value for key, value in overrides.items() if value is not None}
    if updates:
        settings = settings.model_copy(update=updates)
    return settings
