"""Engine settings read from ``AIFLOW_*`` environment variables."""

from __future__ import annotations
import os
import sys
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field, field_validator

DEFAULT_MAX_STEPS = 50


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class EngineSettings(BaseModel):
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)
    # fallback key for api_key tools that carry no key of their own
    api_key: Optional[str] = None
    tool_timeout_s: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"
    record_trace: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return str(v or "INFO").upper()

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            max_steps=int(os.getenv("AIFLOW_MAX_STEPS", DEFAULT_MAX_STEPS)),
            api_key=os.getenv("AIFLOW_API_KEY") or None,
            tool_timeout_s=float(os.getenv("AIFLOW_TOOL_TIMEOUT", "30")),
            log_level=os.getenv("AIFLOW_LOG_LEVEL", "INFO"),
            record_trace=_env_bool("AIFLOW_RECORD_TRACE"),
        )


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output to stderr at ``level``."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format="{time:HH:mm:ss} | {level: <8} | {message}")
