"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Companion configuration. All values come from environment variables."""

    # Completions API
    completions_api_key: str = Field(default="")
    completions_url: str = Field(default="https://gen.pollinations.ai/v1/chat/completions")
    # None means no read timeout: a stalled stream only ends on cancel
    request_timeout: float | None = Field(default=None)
    connect_timeout: float = Field(default=10.0)

    # Generation
    default_model: str = Field(default="openai")
    temperature: float = Field(default=1.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)
    streaming_enabled: bool = Field(default=True)

    # Storage
    database_path: Path = Field(default=Path("data/companion.db"))

    # Memory
    stm_capacity: int = Field(default=20, ge=1)
    ltm_capacity: int = Field(default=100, ge=1)
    keyword_capacity: int = Field(default=50, ge=1)
    memory_query_limit: int = Field(default=5, ge=1)

    # Conversation
    context_window_size: int = Field(default=10, ge=0)

    # Personas selected at startup
    default_user_persona: str = Field(default="user_default")
    default_ai_persona: str = Field(default="ai_default")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def generation_defaults(self) -> dict[str, object]:
        """Return the generation parameters a new chat session starts with."""
        return {
            "model": self.default_model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "streaming": self.streaming_enabled,
        }


settings = Settings()
