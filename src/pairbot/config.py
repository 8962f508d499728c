"""Configuration management for pairbot.

Supports layered configuration with priority: CLI args > ENV vars > .env file > defaults.

Variable names are unprefixed (``PORT``, ``AUTO_REACT``, ``OWNER_NUMBER`` ...)
so existing deployments of the bot keep working with their environment.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path

import platformdirs
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_MENU_IMAGE_URL = "https://i.postimg.cc/B6w4rV6T/20250611-123112.png"


def _get_default_data_dir() -> Path:
    """Platform-appropriate data directory.

    - macOS: ~/Library/Application Support/pairbot
    - Windows: %APPDATA%/pairbot
    - Linux: ~/.local/share/pairbot
    """
    return Path(platformdirs.user_data_dir("pairbot", "pairbot"))


def get_user_log_dir() -> Path:
    """Platform-appropriate logs directory."""
    return Path(platformdirs.user_log_dir("pairbot", "pairbot"))


class Settings(BaseSettings):
    """Application settings.

    Configuration is loaded in the following priority (highest to lowest):
    1. Arguments passed directly to Settings() (the CLI does this)
    2. Environment variables
    3. .env file in the current directory
    4. Default values

    Example:
        ```python
        settings = get_settings()
        settings = Settings(port=9000, auto_react="")
        print(settings.sessions_dir)
        ```

    Environment variables:
        PORT: Dashboard port (default: 3000)
        AUTO_STATUS_TEXT: Profile status set on connect (empty disables)
        AUTO_REACT: Emoji reaction for private messages (empty disables)
        MENU_IMAGE_URL: Image sent with the ``.menu`` command
        OWNER_NUMBER: Phone number notified when a session connects
        LOG_LEVEL: Logging level (default: INFO)
        BRIDGE_URL: WebSocket URL of the protocol bridge
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Dashboard host to bind to")  # nosec B104
    port: int = Field(default=3000, ge=1, le=65535, description="Dashboard port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Paths
    data_dir: Path = Field(
        default_factory=_get_default_data_dir,
        description="Base directory for sessions and downloads",
    )

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(default="text", description="'text' or 'json'")
    log_to_file: bool = Field(default=False, description="Also log to a rotating file")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024 * 1024,
        le=100 * 1024 * 1024,
        description="Maximum size of each log file before rotation",
    )
    log_file_backup_count: int = Field(default=5, ge=1, le=20)

    # Bot behavior
    auto_status_text: str = Field(
        default="pairbot online ⚡",
        description="Profile status text set when a session connects (empty disables)",
    )
    auto_react: str = Field(
        default="👍",
        description="Reaction sent to private messages (empty disables)",
    )
    menu_image_url: str = Field(default=DEFAULT_MENU_IMAGE_URL)
    bot_name: str = Field(default="pairbot", description="Title shown at the top of the menu")
    owner_number: str = Field(
        default="",
        description="Phone number notified with the menu when a session connects",
    )
    command_prefix: str = Field(default=".", min_length=1, max_length=3)

    # Protocol bridge
    bridge_url: str = Field(default="ws://127.0.0.1:3001", description="Bridge WebSocket URL")
    bridge_token: str = Field(default="", description="Shared secret sent to the bridge")
    browser_name: str = Field(default="Chrome", description="Browser reported to the service")

    # Timeouts (seconds)
    connect_timeout: float = Field(default=30.0, ge=1.0, le=300.0)
    request_timeout: float = Field(default=30.0, ge=1.0, le=300.0)
    logout_timeout: float = Field(default=10.0, ge=0.5, le=120.0)
    pairing_timeout: float = Field(default=180.0, ge=10.0, le=1800.0)
    media_timeout: float = Field(default=20.0, ge=1.0, le=300.0)

    # Reconnect backoff for closes that never reached "open"
    reconnect_base_delay: float = Field(default=1.0, ge=0.0, le=60.0)
    reconnect_max_delay: float = Field(default=60.0, ge=1.0, le=3600.0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is supported."""
        v_lower = v.lower()
        if v_lower not in {"text", "json"}:
            raise ValueError(f"Invalid log format: {v}. Must be 'text' or 'json'")
        return v_lower

    @field_validator("owner_number")
    @classmethod
    def normalize_owner_number(cls, v: str) -> str:
        """Keep digits only ("+1 (555) 010-0000" -> "15550100000")."""
        return re.sub(r"\D", "", v)

    @property
    def sessions_dir(self) -> Path:
        """One credential namespace per session id."""
        return self.data_dir / "sessions"

    @property
    def downloads_dir(self) -> Path:
        """Where the ``dp`` command saves profile photos."""
        return self.data_dir / "downloads"

    @property
    def log_file_path(self) -> Path:
        return get_user_log_dir() / "pairbot.log"

    @property
    def owner_jid(self) -> str | None:
        return f"{self.owner_number}@s.whatsapp.net" if self.owner_number else None

    def ensure_data_dirs(self) -> list[str]:
        """Create data directories if they don't exist.

        Returns:
            List of error messages (empty if all successful)
        """
        errors = []
        for dir_name, dir_path in (
            ("data", self.data_dir),
            ("sessions", self.sessions_dir),
            ("downloads", self.downloads_dir),
        ):
            try:
                dir_path.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(
                    f"Permission denied creating {dir_name} directory: {dir_path}\n"
                    f"  → Use --data-dir or DATA_DIR to choose a writable location"
                )
            except OSError as e:
                errors.append(f"Failed to create {dir_name} directory: {dir_path} ({e})")
        return errors

    def check(self) -> list[str]:
        """Check settings that pydantic cannot validate on its own.

        Returns:
            List of problems (empty if the configuration is usable)
        """
        problems = []
        if not self.bridge_url.startswith(("ws://", "wss://")):
            problems.append(f"BRIDGE_URL must start with ws:// or wss:// (got {self.bridge_url!r})")
        if not self.menu_image_url.startswith(("http://", "https://")):
            problems.append(f"MENU_IMAGE_URL must be an http(s) URL (got {self.menu_image_url!r})")
        if self.owner_number and not 8 <= len(self.owner_number) <= 15:
            problems.append("OWNER_NUMBER must have 8-15 digits")
        if self.reconnect_base_delay > self.reconnect_max_delay:
            problems.append("RECONNECT_BASE_DELAY must not exceed RECONNECT_MAX_DELAY")
        return problems

    def print_config(self) -> None:
        """Print current configuration to stdout."""
        print("pairbot configuration:")
        print(f"  Host: {self.host}")
        print(f"  Port: {self.port}")
        print(f"  Debug: {self.debug}")
        print(f"  Log Level: {self.log_level}")
        print(f"  Log Format: {self.log_format}")
        print(f"  Data Directory: {self.data_dir}")
        print(f"  Sessions Directory: {self.sessions_dir}")
        print(f"  Downloads Directory: {self.downloads_dir}")
        print(f"  Bridge URL: {self.bridge_url}")
        print(f"  Command Prefix: {self.command_prefix}")
        print(f"  Auto React: {self.auto_react or 'disabled'}")
        print(f"  Auto Status: {self.auto_status_text or 'disabled'}")
        print(f"  Owner Notify: {'enabled' if self.owner_number else 'disabled'}")
        print(f"  Reconnect Backoff: {self.reconnect_base_delay}s .. {self.reconnect_max_delay}s")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Call reset_settings() to force a reload.
    """
    return Settings()


def reset_settings() -> None:
    """Clear settings cache to force reload on next get_settings() call."""
    get_settings.cache_clear()
