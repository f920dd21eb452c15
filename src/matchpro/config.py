from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "MatchPro for Dev"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8787
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/matchpro.db"
    data_dir: Path = Path("./data")
    blob_dir: Path = Path("./data/blobs")

    dify_workflow_url: str = ""
    dify_api_key: str = ""
    dify_api_key_for_batch_matching: str = ""
    dify_user: str = "MatchPro User"

    batch_size: int = 3
    max_batch_retries: int = 1
    retry_delay_sec: float = 1.0
    batch_timeout_sec: float = 15.0
    match_timeout_sec: float = 90.0
    cache_version: str = "v2"
    max_finished_sessions: int = 100

    cors_origins: str = "http://127.0.0.1:8787"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("batch_size must be at least 1")
        return value

    @field_validator(
        "max_batch_retries", "max_finished_sessions", "retry_delay_sec", "batch_timeout_sec", "match_timeout_sec"
    )
    @classmethod
    def validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("numeric settings must not be negative")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def batch_api_key(self) -> str:
        return self.dify_api_key_for_batch_matching or self.dify_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
