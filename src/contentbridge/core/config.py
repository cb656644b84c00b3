"""
ContentBridge configuration management.

Provides centralized configuration with validation using Pydantic.
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_HOME = Path.home() / ".contentbridge"


def _expand(v: str | Path) -> Path:
    return Path(v).expanduser().resolve()


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file_enabled: bool = True
    console_enabled: bool = True
    json_format: bool = False
    log_directory: Path = Field(default_factory=lambda: DEFAULT_HOME / "logs")

    @field_validator("log_directory", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return _expand(v)


class RemoteConfig(BaseModel):
    """Connection to the exporting site."""

    posts_url: str = ""
    token: str = ""
    timeout_seconds: float = Field(default=30.0, gt=0)
    types_timeout_seconds: float = Field(default=20.0, gt=0)

    @property
    def is_configured(self) -> bool:
        return bool(self.posts_url and self.token)

    def with_env_overrides(self) -> RemoteConfig:
        """Return a copy with CONTENTBRIDGE_REMOTE_* environment values applied."""
        return self.model_copy(
            update={
                "posts_url": os.environ.get("CONTENTBRIDGE_REMOTE_URL", self.posts_url),
                "token": os.environ.get("CONTENTBRIDGE_REMOTE_TOKEN", self.token),
            }
        )


class ImportConfig(BaseModel):
    """Defaults for import runs."""

    batch_size: int = Field(default=5, ge=1, le=500)
    post_type: str = "post"
    status: str = "publish"
    default_author_id: int | None = None
    reserved_meta_keys: list[str] = Field(
        default_factory=lambda: ["_edit_lock", "_edit_last"]
    )


class MediaConfig(BaseModel):
    """Configuration for media sideloading."""

    timeout_seconds: float = Field(default=60.0, gt=0)
    user_agent: str = "ContentBridge/1.0"
    chunk_size: int = Field(default=64 * 1024, ge=1024)


class DestinationConfig(BaseModel):
    """Where imported content is stored."""

    store_file: Path = Field(default_factory=lambda: DEFAULT_HOME / "destination.json")
    media_directory: Path = Field(default_factory=lambda: DEFAULT_HOME / "media")
    base_url: str = "http://localhost:8000/media"

    @field_validator("store_file", "media_directory", mode="before")
    @classmethod
    def expand_paths(cls, v: str | Path) -> Path:
        return _expand(v)


class ExportConfig(BaseModel):
    """Configuration for serving the export API."""

    token: str = ""
    source_file: Path | None = None
    route_prefix: str = "/content-migrate/v1"
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    default_count: int = Field(default=10, ge=1)

    @field_validator("source_file", mode="before")
    @classmethod
    def expand_source(cls, v: str | Path | None) -> Path | None:
        if v is None or v == "":
            return None
        return _expand(v)


class ContentBridgeConfig(BaseModel):
    """Main ContentBridge configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    importer: ImportConfig = Field(default_factory=ImportConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    destination: DestinationConfig = Field(default_factory=DestinationConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    state_file: Path = Field(default_factory=lambda: DEFAULT_HOME / "watermarks.json")
    session_directory: Path = Field(default_factory=lambda: DEFAULT_HOME / "sessions")

    @field_validator("state_file", "session_directory", mode="before")
    @classmethod
    def expand_session_path(cls, v: str | Path) -> Path:
        return _expand(v)

    @classmethod
    def load(cls, config_path: Path | None = None) -> ContentBridgeConfig:
        """Load configuration from file or create default."""
        if config_path is None:
            config_path = DEFAULT_HOME / "config.json"

        if config_path.exists():
            with open(config_path) as f:
                data = json.load(f)
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = DEFAULT_HOME / "config.json"

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.logging.log_directory.mkdir(parents=True, exist_ok=True)
        self.session_directory.mkdir(parents=True, exist_ok=True)
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.destination.media_directory.mkdir(parents=True, exist_ok=True)

    def get_session_file(self, session_id: str = "") -> Path:
        """Audit log path for a new session."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        suffix = f"_{session_id[:8]}" if session_id else ""
        return self.session_directory / f"session_{timestamp}{suffix}.jsonl"


def get_default_config() -> ContentBridgeConfig:
    """Get the default configuration."""
    return ContentBridgeConfig()


def load_config(config_path: Path | None = None) -> ContentBridgeConfig:
    """Load or create configuration."""
    config = ContentBridgeConfig.load(config_path)
    config.remote = config.remote.with_env_overrides()
    config.ensure_directories()
    return config
