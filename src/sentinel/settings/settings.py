"""Application settings configuration."""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Stack engine settings.

    Priority (highest to lowest): init arguments, ``SENTINEL_*`` environment
    variables, ``.env`` file, defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="SENTINEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_name: str = "Sentinel Stacks"
    app_version: str = "0.1.0"

    # Execution defaults
    max_concurrency: int = Field(default=4, ge=1)
    agent_timeout_seconds: Optional[float] = Field(default=300.0, gt=0)  # per-agent deadline
    failure_policy: Literal["continue", "fail_fast"] = "continue"
    clear_context_on_completion: bool = True

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = None  # Path to log file (None disables file logging)
    log_file_level: str = "DEBUG"
    log_show_path: bool = True
    log_show_time: bool = True
    log_rich_tracebacks: bool = True
    log_file_rotation: str = "10 MB"
    log_file_retention: str = "7 days"
    log_file_compression: str = "zip"

    # Telemetry configuration
    telemetry_enabled: bool = False
    telemetry_exporter: Literal["console", "otlp", "none"] = "console"
    telemetry_otlp_endpoint: str = "http://localhost:4317"
    telemetry_service_name: str = "sentinel-stacks"
