"""Configuration loading.

Settings live in ``~/.config/ratealerts/config.toml``. Every section and
key is optional; anything missing falls back to its default.
"""

import logging
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ratealerts.scheduling.background import BackgroundStatus

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "ratealerts"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.toml"
DEFAULT_DB_PATH = CONFIG_DIR / "alerts.db"


class StorageSettings(BaseModel):
    db_path: Path = Field(default=DEFAULT_DB_PATH, description="SQLite alert database")

    @field_validator("db_path")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return value.expanduser()


class RefreshSettings(BaseModel):
    foreground_interval_seconds: float = Field(default=60.0, gt=0)
    background_interval_minutes: float = Field(default=15.0, gt=0)
    background_budget_seconds: float = Field(default=30.0, gt=0)
    background_status: BackgroundStatus = Field(default=BackgroundStatus.AVAILABLE)


class StreamSettings(BaseModel):
    enabled: bool = Field(default=True, description="Use the live websocket feed")
    url: str = Field(default="wss://stream.binance.com:9443/stream")
    backoff_initial_seconds: float = Field(default=1.0, gt=0)
    backoff_max_seconds: float = Field(default=60.0, gt=0)


class ProviderSettings(BaseModel):
    hexarate_url: str = Field(default="https://hexarate.paikama.co/api/rates")
    binance_url: str = Field(default="https://api.binance.com/api/v3")
    timeout_seconds: float = Field(default=30.0, gt=0)


class NotificationSettings(BaseModel):
    enabled: bool = Field(default=True, description="Allow notifications to be shown")


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO")


class Settings(BaseModel):
    """All configuration sections."""

    storage: StorageSettings = Field(default_factory=StorageSettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load settings from a TOML file.

    Args:
        config_path: File to read. Defaults to ``~/.config/ratealerts/config.toml``.

    Returns:
        Parsed settings. Defaults when the file is missing; defaults plus a
        warning when it cannot be parsed.
    """
    config_path = config_path or DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return Settings()

    try:
        return Settings.model_validate(toml.load(config_path))
    except (toml.TomlDecodeError, ValidationError, OSError) as e:
        logger.warning("Ignoring invalid config file %s: %s", config_path, e)
        return Settings()


def save_stream_enabled(enabled: bool, config_path: Optional[Path] = None) -> Path:
    """Persist the live stream switch, keeping every other setting.

    Args:
        enabled: New value for ``[stream] enabled``.
        config_path: File to update. Defaults to ``~/.config/ratealerts/config.toml``.

    Returns:
        The path that was written.

    Raises:
        toml.TomlDecodeError: If the existing file cannot be parsed.
        OSError: If the file cannot be read or written.
    """
    config_path = config_path or DEFAULT_CONFIG_PATH

    data = toml.load(config_path) if config_path.exists() else {}
    data.setdefault("stream", {})["enabled"] = enabled

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        toml.dump(data, f)
    logger.info("Live stream %s in %s", "enabled" if enabled else "disabled", config_path)
    return config_path
