from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    llm_timeout_seconds: float = 45.0
    llm_temperature: float = 0.2
    database_path: str = "./data/assistant.db"
    api_port: int = 8000
    frontend_url: str = "http://localhost:5173"
    log_level: str = "INFO"

    # Hard caps on model/tool round trips per request
    chat_max_steps: int = 5
    stream_max_steps: int = 10
    max_batch_calls: int = 8

    @property
    def resolved_database_path(self) -> Path:
        path = Path(self.database_path)
        if path.is_absolute():
            return path
        return Path(__file__).resolve().parents[2] / path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
