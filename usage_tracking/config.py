"""Application configuration loading via Pydantic settings."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

LogLevel = Literal["debug", "info", "warn", "error"]

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_TRUTHY = frozenset({"1", "true", "t", "yes", "y", "on"})


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables."""

    port: int = Field(default=8080, alias="PORT")
    log_level: LogLevel = Field(default="info", alias="LOG_LEVEL")
    pprof: bool = Field(default=False, alias="PPROF")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> str:
        # Unknown levels fall back to info instead of refusing to start.
        level = str(value or "").strip().lower()
        if level == "warning":
            return "warn"
        return level if level in _LEVELS else "info"

    @field_validator("pprof", mode="before")
    @classmethod
    def normalize_pprof(cls, value: Any) -> bool:
        # Anything that is not clearly "on" leaves profiling disabled.
        if isinstance(value, bool):
            return value
        return str(value or "").strip().lower() in _TRUTHY

    @property
    def logging_level(self) -> int:
        """Return the stdlib logging level for the configured verbosity."""

        return _LEVELS[self.log_level]


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()  # type: ignore[call-arg]
