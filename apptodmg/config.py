"""Configuration settings for apptodmg.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the APPTODMG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="APPTODMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent directory for staging areas (uses system default if not set)",
    )
    install_dir: Path = Field(
        default=Path("/Applications"),
        description="Install location the shortcut link points at",
    )
    shortcut_name: str = Field(
        default="Applications",
        min_length=1,
        description="Name of the install location shortcut inside the image",
    )

    # External tools
    hdiutil_path: str = Field(
        default="/usr/bin/hdiutil",
        description="Disk image utility",
    )
    osascript_path: str = Field(
        default="/usr/bin/osascript",
        description="AppleScript runner used to style the Finder window",
    )
    lipo_path: str = Field(
        default="/usr/bin/lipo",
        description="Tool used to inspect executable architectures",
    )

    # Image formats
    compressed_format: str = Field(
        default="UDZO",
        description="Final compressed read-only image format",
    )
    zlib_level: int = Field(
        default=9,
        ge=1,
        le=9,
        description="zlib level used when converting styled images",
    )
    rw_format: str = Field(
        default="UDRW",
        description="Intermediate read-write image format for styled builds",
    )
    filesystem: str = Field(
        default="HFS+",
        description="Filesystem of the intermediate read-write image",
    )
    size_headroom_mb: int = Field(
        default=20,
        ge=1,
        description="Extra space added to styled images for background and layout files",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Logging level",
    )
    finder_settle_seconds: int = Field(
        default=2,
        ge=0,
        description="Delay inside the Finder script so the layout reaches disk",
    )

    # Timeouts (in seconds)
    tool_timeout: int = Field(
        default=1800,
        ge=10,
        description="Timeout for each hdiutil or lipo invocation",
    )
    styling_timeout: int = Field(
        default=120,
        ge=10,
        description="Timeout for the Finder styling script",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

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


__all__ = ["Settings", "get_settings", "print_settings_json"]
