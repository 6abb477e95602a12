# flowgraph/config.py
"""Engine configuration loaded from FLOWGRAPH_* environment variables."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FLOWGRAPH_", env_file=".env", extra="ignore")

    # Runtime guards
    max_steps: int = Field(default=25, ge=1)
    run_timeout: Optional[float] = None  # seconds, None disables the deadline
    run_sync_handlers_in_thread: bool = True
    max_checkpoints: int = Field(default=1000, ge=1)  # per store; oldest threads evicted first

    # Step types
    http_timeout: float = 30.0
    default_model: str = "gpt-4.1-mini"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @field_validator("run_timeout")
    @classmethod
    def validate_run_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError(f"run_timeout must be positive, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level '{v}'")
        return level


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    return EngineSettings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
