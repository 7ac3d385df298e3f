from __future__ import annotations

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./sidekick.db"
    llm_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    suggestion_max_tokens: int = 500
    suggestion_temperature: float = 0.3
    execution_max_tokens: int = 1024
    actions_timeout_s: float = 10.0
    execute_timeout_s: float = 10.0
    suggestion_timeout_s: float = 8.0
    selection_excerpt_chars: int = 500
    selection_settle_ms: int = 200
    teardown_delay_ms: int = 300
    credential_prefix: str | None = "sk-"
    log_level: str = "INFO"

def get_settings() -> Settings:
    return Settings()


settings = get_settings()
