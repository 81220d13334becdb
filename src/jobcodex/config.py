from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "jobcodex"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8788
    log_level: str = "INFO"
    cors_origins: str = "http://127.0.0.1:8788"

    database_url: str = "sqlite:///./data/jobcodex.db"
    data_dir: Path = Path("./data")

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model_extractor: str = "gpt-5-mini"
    openai_model_writer: str = "gpt-5-mini"
    openai_timeout_sec: int = 60

    local_llm_enabled: bool = False
    local_llm_base_url: str = "http://localhost:11434/v1"
    local_llm_api_key: str = "local"
    local_llm_model: str = "qwen2.5:14b-instruct"
    local_llm_timeout_sec: int = 90

    llm_router_default: str = "openai"
    llm_router_extract_provider: str = "openai"
    llm_router_writer_provider: str = "openai"

    worker_pool_size: int = 4
    batch_concurrency: int = 3
    confidence_threshold: float = 0.8
    coverage_confidence_threshold: float = 0.8
    min_extracted_chars: int = 200
    source_text_limit: int = 20000
    fetch_timeout_sec: int = 30

    default_job_codex_id: str = "job-card-v2.1"
    default_resume_codex_id: str = "resume-card-v1"
    tailor_codex_id: str = "resume-tailor-v1"
    tailor_cover_letter_enabled: bool = True

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("batch_concurrency", "worker_pool_size")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("confidence_threshold", "coverage_confidence_threshold")
    @classmethod
    def validate_threshold(cls, value: float) -> float:
        if value < 0 or value > 1:
            raise ValueError("threshold must be between 0 and 1")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
