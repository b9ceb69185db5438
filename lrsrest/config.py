from __future__ import annotations

from functools import lru_cache
from typing import Any

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console

console = Console()
log = logger.bind(module="config")


class Settings(BaseSettings):
    """Client configuration loaded from the environment (and `.env`)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    default_host: str = Field(default="127.0.0.1", alias="LRS_DEFAULT_HOST")
    default_port: int = Field(default=3001, alias="LRS_DEFAULT_PORT")
    username: str = Field(default="testlab", alias="LRS_USERNAME")
    password: str = Field(default="changeme", alias="LRS_PASSWORD")

    timeout_seconds: float = Field(default=10.0, alias="LRS_TIMEOUT_SECONDS")
    reuse_connections: bool = Field(default=False, alias="LRS_REUSE_CONNECTIONS")

    def export_safe(self) -> dict[str, Any]:
        """Return non-sensitive settings for debugging/logging."""
        return {
            "log_level": self.log_level,
            "default_host": self.default_host,
            "default_port": self.default_port,
            "username": self.username,
            "timeout_seconds": self.timeout_seconds,
            "reuse_connections": self.reuse_connections,
        }


@lru_cache
def get_settings() -> Settings:
    """Load and cache client settings."""
    settings = Settings()
    console.log(
        f"[bold green]Loaded settings[/] default_target="
        f"{settings.default_host}:{settings.default_port}",
    )
    log.info("Settings initialised: {}", settings.export_safe())
    return settings
