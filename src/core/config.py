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
    # ── ArangoDB ─────────────────────────────────────────
    arangodb_url: str = "http://localhost:8529"
    arangodb_database: str = "medgraph"
    arangodb_username: str = "root"
    arangodb_password: str = ""

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic | together
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    together_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-haiku-20240307"
    together_model: str = "meta-llama/Llama-3.2-90B-Vision-Instruct-Turbo"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 1024

    # ── Engine ───────────────────────────────────────────
    max_attempts: int = 8
    attempt_timeout_s: float = 40.0
    request_deadline_s: float = 240.0
    escalation_threshold: int = 3
    list_row_limit: int = 15

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
