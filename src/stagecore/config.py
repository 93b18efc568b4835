"""
Centralized configuration for StageCore.

Uses Pydantic BaseSettings for environment variable integration
and validation. All configurable values should be defined here.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (STAGECORE_*)
3. .env file
4. Default values

Skip directives themselves (SKIP_DEPLOY=true) are not settings: they are
read per stage by stagecore.skip.SkipPolicy so operators can target any
stage without a code change.

Example:
    from stagecore.config import get_config

    config = get_config()
    print(config.terraform_binary)  # From STAGECORE_TERRAFORM_BINARY or default

    # Override at runtime
    config = get_config(work_dir="/tmp/mysql-run")
"""

from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stagecore.contracts.timeouts import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY_S


class StageCoreConfig(BaseSettings):
    """
    Central configuration for StageCore.

    All settings can be overridden via environment variables
    prefixed with STAGECORE_.

    Example:
        export STAGECORE_WORK_DIR=~/stagecore-runs
        export STAGECORE_LOG_FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="STAGECORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service identification
    service_name: str = Field(
        default="stagecore",
        description="Service name for log and span attribution",
    )

    # Skip directives
    skip_prefix: str = Field(
        default="SKIP_",
        description="Prefix prepended to the uppercased stage name to form a skip directive",
    )
    skip_value: str = Field(
        default="true",
        description="Directive value (case-insensitive) that skips a stage",
    )

    # State persistence
    test_data_folder: str = Field(
        default=".test-data",
        description="Folder inside the test directory that holds persisted stage values",
    )
    work_dir: Optional[str] = Field(
        default=None,
        description="Persistent root for test directories; a fresh temp dir is used when unset",
    )

    # Terraform
    terraform_binary: str = Field(
        default="terraform",
        description="Terraform executable (terraform or tofu)",
    )
    terraform_max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=0,
        description="Retries for terraform commands failing with a known transient error",
    )
    terraform_retry_sleep_seconds: float = Field(
        default=DEFAULT_RETRY_DELAY_S,
        ge=0,
        description="Delay between terraform retries",
    )

    # MySQL
    mysql_port: int = Field(
        default=3306,
        ge=1,
        le=65535,
        description="Port of the provisioned MySQL instance",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for StageCore",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Stage event output format (json for log pipelines, text for console)",
    )

    @field_validator("work_dir")
    @classmethod
    def expand_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand ~ and environment variables in paths."""
        if v is None:
            return v
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("skip_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Skip prefixes are environment variable names and must not be blank."""
        if not v.strip():
            raise ValueError("skip_prefix must not be empty")
        return v.strip()


# Global singleton
_config: Optional[StageCoreConfig] = None


def get_config(**overrides) -> StageCoreConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        StageCoreConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = StageCoreConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
