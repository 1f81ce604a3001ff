"""
Runtime configuration, read from SHELL_BUFFERS_* environment variables.

    SHELL_BUFFERS_TRACE=1           print each command to stderr before it runs
    SHELL_BUFFERS_TRACE_PREFIX="+ " prefix for traced lines
    SHELL_BUFFERS_COPY_CHUNK_SIZE   bytes moved per read when copying
"""

from __future__ import annotations

import threading
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings", "get_settings", "set_settings"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SHELL_BUFFERS_",
        extra="ignore",
        case_sensitive=False,
    )

    trace: bool = Field(
        default=False,
        description="Write a set -x style line to stderr for every command run.",
    )
    trace_prefix: str = Field(
        default="+ ",
        description="Prefix for traced command lines.",
    )
    copy_chunk_size: int = Field(
        default=32 * 1024,
        ge=1,
        description="Maximum bytes read per call when copying between buffers.",
    )


_lock = threading.Lock()
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them from the environment once."""
    global _settings
    with _lock:
        if _settings is None:
            _settings = Settings()
        return _settings


def set_settings(settings: Optional[Settings]) -> None:
    """Replace the process-wide settings. None reloads from the environment on next use."""
    global _settings
    with _lock:
        _settings = settings
