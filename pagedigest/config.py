from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MODEL = "nvidia/nemotron-3-nano-30b-a3b:free"


class LLMSettings(BaseModel):
    """OpenAI-compatible chat completion endpoint (OpenRouter by default)."""

    api_base: str = Field(default="https://openrouter.ai/api/v1")
    api_key: SecretStr | None = Field(default=None)
    summarizer_model: str = Field(default=DEFAULT_MODEL)
    critic_model: str = Field(default=DEFAULT_MODEL)
    temperature: float = Field(default=0.3)
    max_tokens: int = Field(default=1000)
    timeout: float = Field(default=60.0)
    max_retries: int = Field(default=3)
    fallback_bases: list[str] = Field(default_factory=list)

    @field_validator("fallback_bases", mode="before")
    @classmethod
    def _parse_fallback_bases(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    def api_key_value(self) -> str | None:
        if self.api_key is None:
            return None
        key = self.api_key.get_secret_value().strip()
        if not key or key == "-":
            return None
        return key


class FetchSettings(BaseModel):
    user_agent: str = Field(default="Mozilla/5.0 (compatible; SummarizerBot/1.0)")
    timeout: float = Field(default=30.0)
    max_content_words: int = Field(
        default=8000,
        ge=1,
    )


class WorkflowSettings(BaseModel):
    save_threshold: float = Field(
        default=7.0,
        ge=0,
        le=10,
    )
    summary_max_words: int = Field(
        default=150,
        ge=1,
    )
    # Seconds per stage name, handed to the stage through its run context
    stage_timeouts: dict[str, float] = Field(default_factory=dict)
    # Most recent chat messages sent to the summarizer per request
    chat_history_limit: int = Field(default=20, ge=1)


class StorageSettings(BaseModel):
    summaries_dir: Path = Field(default=Path("./workspace/summaries"))


class DatabaseSettings(BaseModel):
    enabled: bool = Field(default=True)
    url: str = Field(default="sqlite:///./workspace/database/pagedigest.db")

    def ensure_sqlite_parent(self) -> None:
        """Create the directory holding a file-backed sqlite database."""
        prefix = "sqlite:///"
        if self.url.startswith(prefix) and ":memory:" not in self.url:
            Path(self.url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


class AppSettings(BaseSettings):
    """Application configuration loaded from environment variables.

    Uses pydantic-settings to support .env and environment overrides.
    """

    llm: LLMSettings = Field(default_factory=LLMSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL"))

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


@lru_cache
def get_settings() -> AppSettings:
    return AppSettings()
