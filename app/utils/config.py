"""
Configuration management for the share ingest service.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from pathlib import Path
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # API Configuration
    api_port: int = 8888
    log_level: str = "INFO"
    api_title: str = "Share Ingest API"
    api_version: str = "1.0.0"

    # Staging Configuration
    staging_root: Path = Path("hotdir")
    trash_dir: Path = Path("hotdir/.trash")
    ledger_filename: str = "file_data.csv"
    track_unsupported_files: bool = False

    # Batch Configuration
    batch_size: int = 3
    concurrent_operations: int = 3
    batch_timeout_seconds: float = 60.0

    # Transfer Configuration
    transfer_tool: str = "smbclient"
    transfer_timeout_seconds: float = 30.0
    transfer_max_attempts: int = 3
    transfer_backoff_seconds: float = 1.0
    transfer_backoff_cap_seconds: float = 10.0

    # SMB Configuration
    smb_port: int = 445
    smb_connection_timeout: int = 60

    # Mount Configuration
    mount_root: Path = Path("mountpoint")
    mount_ledger_filename: str = "mountpoints.csv"
    mount_command_prefix: str = "sudo"
    mount_timeout_seconds: float = 60.0

    # Process Registry Configuration
    registry_sweep_interval_seconds: float = 60.0
    registry_expiration_seconds: float = 300.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator(
        "batch_size",
        "concurrent_operations",
        "batch_timeout_seconds",
        "transfer_timeout_seconds",
        "transfer_max_attempts",
        "registry_sweep_interval_seconds",
        "registry_expiration_seconds",
        "mount_timeout_seconds",
    )
    @classmethod
    def must_be_positive(cls, v):
        """Reject zero or negative batch, timeout and retry knobs."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @property
    def mount_ledger_path(self) -> Path:
        """Location of the shared mount ledger."""
        return self.mount_root / self.mount_ledger_filename

    def get_mount_command_prefix(self) -> list[str]:
        """Parse the mount command prefix into argv tokens."""
        return self.mount_command_prefix.split()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
