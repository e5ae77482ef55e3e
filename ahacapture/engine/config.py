"""Configuration management for the capture engine."""

import os
from enum import Enum
from pathlib import Path
from typing import List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator


class StoreMode(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


class AuthMode(str, Enum):
    ANONYMOUS = "anonymous"
    PASSWORD = "password"


class RemoteConfig(BaseModel):
    api_key: Optional[str] = None
    project_id: Optional[str] = None
    collection: str = "raw_entries"
    auth: AuthMode = AuthMode.ANONYMOUS
    timeout: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.project_id)

    def with_env(self) -> "RemoteConfig":
        """Fill missing credentials from AHA_FIREBASE_* environment variables."""
        return self.model_copy(update={
            "api_key": self.api_key or os.environ.get("AHA_FIREBASE_API_KEY"),
            "project_id": self.project_id or os.environ.get("AHA_FIREBASE_PROJECT_ID"),
        })


class SyncConfig(BaseModel):
    auto_sync: bool = False
    create_timeout: float = 5.0
    cache_limit: int = 50
    trash_retention_hours: float = 24.0
    fetch_statuses: List[str] = Field(default_factory=lambda: ["open", "active", "done"])
    purge_remote: bool = True

    @field_validator('cache_limit')
    @classmethod
    def validate_cache_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("cache_limit must be at least 1")
        return v

    @field_validator('create_timeout', 'trash_retention_hours')
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def retention_ms(self) -> int:
        return int(self.trash_retention_hours * 3600 * 1000)


class ApiConfig(BaseModel):
    host: str = "localhost"
    port: int = 8766


class Config(BaseModel):
    """Main configuration for the capture engine."""

    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local" / "share" / "ahacapture")
    store_mode: StoreMode = StoreMode.REMOTE
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @field_validator('data_dir')
    @classmethod
    def validate_data_dir(cls, v: Path) -> Path:
        if isinstance(v, str):
            v = Path(v)
        v = v.expanduser().resolve()
        if not v.exists():
            logger.debug(f"Data directory does not exist, will create: {v}")
            v.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def store_dir(self) -> Path:
        return self.data_dir / "store"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @classmethod
    def default_locations(cls) -> List[Path]:
        return [
            Path("ahacapture.yaml"),
            Path.home() / ".config" / "ahacapture" / "config.yaml",
        ]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML.

        With no explicit path the default locations are searched; if none
        exists the built-in defaults are used.
        """
        if config_path is None:
            for candidate in cls.default_locations():
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.debug("No config file found, using defaults")
                return cls()

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
