"""Configuration settings for aon_builder.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STORE_URL = "https://store.aon-builder.dev"
DEFAULT_COMPILER_VERSION = "1.85.0"


def _default_cache_dir() -> Path:
    """Return the default toolchain store directory."""
    return Path.home() / ".cache" / "aon-builder" / "store"


def _default_artifacts_dir() -> Path:
    """Return the default artifacts directory."""
    return Path.home() / ".local" / "share" / "aon-builder" / "artifacts"


def _default_wrappers_dir() -> Path:
    """Return the default wrappers directory."""
    return Path.home() / ".local" / "share" / "aon-builder" / "wrappers"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the AON_BUILD_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="AON_BUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Content-addressed store for toolchain components",
    )
    artifacts_dir: Path = Field(
        default_factory=_default_artifacts_dir,
        description="Root directory for compiled node artifacts",
    )
    wrappers_dir: Path = Field(
        default_factory=_default_wrappers_dir,
        description="Root directory for bundle wrapper executables",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Temporary directory for builds (uses system default if not set)",
    )

    # Toolchain
    store_url: str = Field(
        default=DEFAULT_STORE_URL,
        description="Base URL of the remote toolchain store",
    )
    compiler_version: str = Field(
        default=DEFAULT_COMPILER_VERSION,
        description="Declared Rust compiler version",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - resolve toolchains from the local store only",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_wraps: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum wrappers produced in parallel for one plan",
    )

    # Timeouts (in seconds)
    fetch_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for toolchain component downloads",
    )
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for compiling the node binary",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_COMPILER_VERSION",
    "DEFAULT_STORE_URL",
    "Settings",
    "get_settings",
    "print_settings_json",
]
