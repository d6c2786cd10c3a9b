"""
Orchestrator settings.

Values come from ``DEPLOY_ORCHESTRATOR_*`` environment variables, an optional
``.env`` file, or a YAML file loaded with :meth:`OrchestratorSettings.from_yaml`.
"""

import builtins
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Runtime settings shared by the orchestrator, strategies and managers."""

    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_ORCHESTRATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service identification
    service_name: str = Field(default="deploy-orchestrator", description="Name reported in logs and metrics")

    # Suspension points
    pause_poll_interval: float = Field(default=1.0, gt=0, description="Seconds between pause checks")
    approval_timeout: float = Field(default=3600.0, gt=0, description="Seconds to wait for a manual approval")
    approval_poll_interval: float = Field(default=1.0, gt=0, description="Seconds between approval checks")
    ready_timeout: float = Field(default=300.0, gt=0, description="Seconds to wait for a batch to become ready")

    # Batch and environment validation thresholds
    batch_max_error_rate: float = Field(default=0.05, ge=0, description="Maximum error rate for a rolling batch")
    batch_max_response_time_ms: float = Field(
        default=2000.0, gt=0, description="Maximum response time for a rolling batch"
    )
    environment_max_error_rate: float = Field(
        default=0.01, ge=0, description="Maximum error rate for a blue-green environment"
    )
    environment_max_response_time_ms: float = Field(
        default=500.0, gt=0, description="Maximum response time for a blue-green environment"
    )

    # Health monitoring
    health_check_interval: float = Field(default=30.0, gt=0, description="Seconds between monitoring probes")

    # History
    history_size: int = Field(default=1000, gt=0, description="Entries kept in rollback and traffic history")

    # Observability
    log_level: str = Field(default="INFO", description="Log level of the deploy_orchestrator logger")
    json_logging: bool = Field(default=False, description="Emit JSON log records")
    metrics_enabled: bool = Field(default=True, description="Record Prometheus metrics")
    tracing_enabled: bool = Field(default=True, description="Wrap executions in OpenTelemetry spans")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_yaml(cls, path: str | Path, **overrides: Any) -> "OrchestratorSettings":
        """Load settings from a YAML mapping; keyword overrides win."""
        with open(path) as f:
            data: builtins.dict[str, Any] = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        data.update(overrides)
        return cls(**data)
