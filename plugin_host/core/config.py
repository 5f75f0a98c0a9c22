"""
Application configuration using Pydantic Settings.

Centralizes host-level configuration with environment variable support.
Numeric supervision policy (thresholds, intervals) lives in
config/defaults.yaml and is read through typed_config.load_host_limits().
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# plugins/ at project root, sibling of the plugin_host package
DEFAULT_PLUGINS_DIR = Path(__file__).resolve().parent.parent.parent / "plugins"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars
    )

    # Plugin discovery
    plugins_dir: Path = DEFAULT_PLUGINS_DIR
    disabled_dir_name: str = "disabled"

    # Process-wide timezone for cron expressions
    timezone: str = "Africa/Lagos"

    # Background supervision (health ticks, cascade reload)
    monitors_enabled: bool = True

    # Operator API
    admin_api_key: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000

    # Environment
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_to_file: bool = False
    logs_dir: Path = Path("logs")

    @property
    def disabled_dir(self) -> Path:
        """Directory holding plugin files excluded from discovery."""
        return self.plugins_dir / self.disabled_dir_name

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
