"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Postgres (telemetry warehouse) ───────────────────
    postgres_user: str = "copilot"
    postgres_password: str = "copilot_pw"
    postgres_db: str = "analytics"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    sql_timeout_ms: int = 10_000

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    ai_planner_model: str = "gpt-4o-mini"
    ai_narrator_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-haiku-20240307"
    ai_planner_max_tokens: int = 400
    ai_short_max_tokens: int = 220
    ai_deep_max_tokens: int = 600

    # ── Caching & request budget ─────────────────────────
    ai_plan_cache_ttl_seconds: float = 3600
    ai_result_cache_ttl_seconds: float = 300
    ai_cache_max_size: int = 1024
    ai_request_timeout_seconds: float = 45.0

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
