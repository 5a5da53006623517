"""Controller settings.

Created: 2026-03-02

Values come from ``CCB_DESKTOP_*`` environment variables, falling back to the
defaults below. These configure the controller only; the bridge's own config
document is handled by ``config_store``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ccb_desktop.common import CONFIG_FILE, CONTROL_API_URL, PLUGINS_FILE


class Settings(BaseSettings):
    """Knobs for the supervisor, control API client and config store."""

    model_config = SettingsConfigDict(env_prefix="CCB_DESKTOP_", extra="ignore")

    api_url: str = CONTROL_API_URL
    request_timeout: float = Field(default=5.0, gt=0)
    status_probe_timeout: float = Field(default=2.0, gt=0)
    start_grace_seconds: float = Field(default=2.0, ge=0)
    stop_grace_seconds: float = Field(default=0.5, ge=0)
    log_buffer_size: int = Field(default=50, ge=1)
    config_path: Path = CONFIG_FILE
    plugins_path: Path = PLUGINS_FILE


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""
    return Settings()
