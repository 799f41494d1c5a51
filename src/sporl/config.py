"""Configuration management for sporl."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".sporl"
_CONFIG_FILE = "config.toml"
_CACHE_DIR = "cache"
_STATE_DIR = "state"
_RELEASES_DIR = "releases"
_LOG_DIR = "logs"


def get_base_dir() -> Path:
    """Return the base directory for all sporl runtime files (~/.sporl/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class GeneralConfig(BaseModel):
    """Settings that apply to every command."""

    log_level: str = Field(default="info", description="Logging level")


class SpotifyConfig(BaseModel):
    """Spotify application settings for the PKCE flow and the Web API."""

    client_id: str = Field(default="", description="Spotify Developer App client ID")
    user_id: str = Field(default="", description="Spotify user that owns created playlists")
    redirect_uri: str = Field(default="http://127.0.0.1:8888/callback", description="OAuth redirect URI")
    scope: str = Field(
        default="user-follow-read playlist-read-private playlist-modify-private playlist-modify-public",
        description="OAuth scopes requested during sporl auth",
    )
    auth_url: str = Field(default="https://accounts.spotify.com/authorize", description="Authorize endpoint")
    token_url: str = Field(default="https://accounts.spotify.com/api/token", description="Token endpoint")
    api_url: str = Field(default="https://api.spotify.com/v1", description="Web API base URL")


class SyncConfig(BaseModel):
    """Tuning for the release sync pass."""

    batch_size: int = Field(default=20, ge=1, description="Artists per batch")
    cooldown_seconds: int = Field(default=30, ge=0, description="Pause between batches that hit the API")
    max_retry_after: int = Field(default=120, ge=0, description="Longest Retry-After we are willing to wait")
    max_rate_limit_retries: int = Field(default=3, ge=0, description="Retries per artist while rate limited")
    fetch_limit: int = Field(default=50, ge=1, le=50, description="Releases requested per artist")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    spotify: SpotifyConfig = Field(default_factory=SpotifyConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def cache_dir(self) -> Path:
        return self.base_dir / _CACHE_DIR

    @property
    def state_dir(self) -> Path:
        return self.base_dir / _STATE_DIR

    @property
    def releases_dir(self) -> Path:
        return self.base_dir / _RELEASES_DIR

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    @property
    def token_path(self) -> Path:
        return self.cache_dir / "token.json"

    @property
    def artists_path(self) -> Path:
        return self.cache_dir / "artists.json"

    def is_spotify_configured(self) -> bool:
        """Return True if the Spotify client id is set."""
        return bool(self.spotify.client_id)


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def config_exists() -> bool:
    """Return True if a config file is present on disk."""
    return (get_base_dir() / _CONFIG_FILE).is_file()


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string (tables with scalar values only)."""
    lines: list[str] = []
    sections = [
        ("general", config.general),
        ("spotify", config.spotify),
        ("sync", config.sync),
    ]
    for section_name, section_model in sections:
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
