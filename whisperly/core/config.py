"""Unified application configuration."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # HTTP bridge
    host: str = "127.0.0.1"
    port: int = 8765
    cors_origins: list[str] = ["*"]

    # Logs
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_rotate_mb: int = 5
    log_retention_days: int = 7

    # Text service
    llm_provider: str = "gemini"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    openai_compat_base_url: str = "http://127.0.0.1:8000"
    openai_compat_chat_endpoint: str = "/v1/chat/completions"
    openai_compat_model: str | None = None
    openai_compat_api_key: str | None = None
    llm_temperature: float = 0.7
    llm_connect_timeout_sec: float = 30.0
    llm_read_timeout_sec: float = 180.0

    # Speech input
    speech_ws_url: str = "ws://127.0.0.1:8766/speech"
    speech_language: str = "en-US"

    # Secrets
    secrets_file: str = "data/secrets.json"

    # State store
    state_buffer_size: int = 64

    # Observability
    enable_metrics: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls.json_config_settings_source,
            file_secret_settings,
        )

    @staticmethod
    def json_config_settings_source() -> dict[str, object]:
        """Load config.json from the repository root when present."""
        config_path = Path(__file__).resolve().parents[2] / "config.json"
        if config_path.is_file():
            try:
                return json.loads(config_path.read_text())
            except ValueError:
                return {}
        return {}


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
