from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_host: str = Field(default="127.0.0.1", alias="BIND_HOST")
    app_port: int = Field(default=3000, alias="PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")
    ollama_model: str = Field(
        default="huihui_ai/deepseek-r1-abliterated:32b-qwen-distill", alias="OLLAMA_MODEL"
    )
    temperature: float = Field(default=0.7, alias="TEMPERATURE")
    max_tokens: int = Field(default=8192, alias="MAX_TOKENS")
    convo_dir: str = Field(default="convo-history", alias="CONVO_DIR")
    heartbeat_interval_sec: float = Field(default=15.0, gt=0, alias="HEARTBEAT_INTERVAL_SEC")
    upstream_connect_timeout_sec: float = Field(
        default=10.0, gt=0, alias="UPSTREAM_CONNECT_TIMEOUT_SEC"
    )
    upstream_read_timeout_sec: float = Field(
        default=300.0, gt=0, alias="UPSTREAM_READ_TIMEOUT_SEC"
    )
    sink_queue_size: int = Field(default=64, ge=1, alias="SINK_QUEUE_SIZE")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except Exception:  # noqa: BLE001
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]

    def conversation_root(self) -> Path:
        """Return the directory holding one JSON document per conversation."""

        return Path(self.convo_dir).expanduser().resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
