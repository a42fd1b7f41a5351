"""
Configuration management for termrelay.

This module handles loading, validating, and accessing configuration from YAML files.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class ServerConfig(BaseModel):
    """Relay HTTP/websocket server configuration."""

    host: str = Field(default="0.0.0.0", description="Host to bind the relay server")
    port: int = Field(default=8080, ge=1, le=65535, description="Port for the relay server")
    public_url: Optional[str] = Field(
        default=None, description="Externally visible base URL (ws:// or wss://)"
    )


class AuthenticationConfig(BaseModel):
    """Static access tokens accepted by the relay."""

    class Token(BaseModel):
        """Access token bound to a user."""

        token: str
        user_id: int
        username: str
        role: str = Field(default="user", description="'admin' or 'user'")

    tokens: List[Token] = Field(default_factory=list, description="Accepted access tokens")


class TargetConfig(BaseModel):
    """SSH host a session can be opened against."""

    id: str
    name: str = ""
    host: str
    port: int = Field(default=22, ge=1, le=65535)
    username: str
    password: Optional[str] = None
    key_path: Optional[Path] = None
    allowed_user_ids: List[int] = Field(
        default_factory=list, description="Users allowed to connect (empty = admins only)"
    )

    @model_validator(mode="after")
    def _require_credential(self) -> "TargetConfig":
        if self.password is None and self.key_path is None:
            raise ValueError(f"target {self.id!r} needs a password or a key_path")
        return self


class TransportConfig(BaseModel):
    """Live session transport configuration."""

    heartbeat_interval: float = Field(
        default=60.0, gt=0, description="Seconds between heartbeats while connected"
    )
    max_heartbeat_failures: int = Field(
        default=2, ge=1, description="Consecutive not-found/forbidden heartbeats before stopping"
    )
    connect_timeout: float = Field(default=10.0, gt=0, description="Handshake timeout")
    term_type: str = Field(default="xterm-256color", description="TERM for the remote shell")
    default_columns: int = Field(default=80, ge=1)
    default_rows: int = Field(default=24, ge=1)


class ReplayConfig(BaseModel):
    """Replay playback clock configuration."""

    tick_interval: float = Field(default=0.05, gt=0, description="Seconds between playback ticks")
    seek_settle_delay: float = Field(
        default=0.1, ge=0, description="Delay before resuming playback after a seek"
    )
    default_speed: float = Field(default=1.0, gt=0)
    min_speed: float = Field(default=0.25, gt=0)
    max_speed: float = Field(default=3.0, gt=0)

    @model_validator(mode="after")
    def _speed_bounds(self) -> "ReplayConfig":
        if not self.min_speed <= self.default_speed <= self.max_speed:
            raise ValueError("default_speed must lie between min_speed and max_speed")
        return self


class RecordingConfig(BaseModel):
    """Session recording configuration."""

    enabled: bool = Field(default=True, description="Enable session recording")
    output_dir: Path = Field(
        default=Path("/data/recordings"), description="Recording output directory"
    )


class MonitorConfig(BaseModel):
    """Stale session monitor configuration."""

    check_interval: float = Field(default=300.0, gt=0, description="Seconds between checks")
    session_timeout: float = Field(
        default=1800.0, gt=0, description="Seconds without heartbeat before a session is stale"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")

    @field_validator("level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


class Config(BaseSettings):
    """Main termrelay configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    authentication: AuthenticationConfig = Field(default_factory=AuthenticationConfig)
    targets: List[TargetConfig] = Field(default_factory=list)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file must contain a mapping: {path}")

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()
