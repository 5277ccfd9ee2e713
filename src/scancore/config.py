# src/scancore/config.py
"""
Configuration for the scan orchestration service, loaded from SCANCORE_* env vars.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Persistence (history/audit rows only, None disables it)
    database_url: Optional[str] = "sqlite:///./scancore_scans.db"

    # Uploads
    max_upload_size: int = 10 * 1024 * 1024  # 10MB per contract file

    # Tool execution
    max_concurrent_tool_runs: int = 4
    default_tool_timeout: float = 300.0
    default_tools: List[str] = ["slither", "mythril", "patterns"]
    tools_config: Optional[str] = None  # YAML overrides for per-tool settings
    tool_priority: List[str] = ["slither", "mythril", "manticore", "echidna", "patterns"]
    poll_interval: float = 0.1

    # Scoring / batch policy
    high_severity_weight: int = 20
    medium_severity_weight: int = 10
    low_severity_weight: int = 0
    batch_fail_on_any_child: bool = True

    # Enrichment
    enable_ai_analysis: bool = True

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="SCANCORE_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @field_validator("default_tool_timeout", "poll_interval")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("max_concurrent_tool_runs")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

