"""Executor contract shared by the deployment strategies, plus small helpers."""

import builtins
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..exceptions import ErrorKind
from .enums import ExecutionStatus, StrategyType
from .models import (
    DeploymentConfig,
    DeploymentMetrics,
    DeploymentResult,
    MetricsSnapshot,
    PerformanceMetrics,
    ResourceUsage,
)
from .validation import ValidationResult, ValidationStepResult

if TYPE_CHECKING:
    from ..managers.health import HealthCheckResult


@runtime_checkable
class StrategyExecutor(Protocol):
    """Operations every deployment strategy provides."""

    strategy_type: StrategyType
    supports_pause: bool

    async def execute(self, config: DeploymentConfig) -> DeploymentResult:
        """Run the deployment. Failures are returned, never raised."""
        ...

    def validate_config(self, config: DeploymentConfig) -> ValidationResult:
        """Check the strategy sub-config without side effects."""
        ...

    def get_metrics(self, deployment_id: str) -> DeploymentMetrics:
        ...

    async def rollback(
        self,
        deployment_id: str,
        target_version: str | None = None,
        reason: str = "Manual rollback requested",
    ) -> DeploymentResult:
        ...


@runtime_checkable
class PausableStrategy(Protocol):
    """Strategies that can hold before their next step."""

    def pause(self, deployment_id: str) -> bool:
        ...

    def resume(self, deployment_id: str) -> bool:
        ...


@dataclass
class StrategyRun:
    """What a strategy remembers about the last run of a deployment."""

    config: DeploymentConfig
    started: float = field(default_factory=time.monotonic)
    finished: float | None = None
    success: bool = False
    snapshot: MetricsSnapshot | None = None
    rollback_count: int = 0

    @property
    def duration(self) -> float:
        return (self.finished or time.monotonic()) - self.started

    def finish(self, success: bool) -> None:
        self.finished = time.monotonic()
        self.success = success

    def metrics(self) -> DeploymentMetrics:
        return metrics_from_snapshot(self.snapshot, self.duration, self.success, self.rollback_count)


def new_execution_id() -> str:
    return str(uuid.uuid4())


def failed_result(
    deployment_id: str,
    execution_id: str,
    message: str,
    error: ErrorKind,
    status: ExecutionStatus = ExecutionStatus.FAILED,
    **extra,
) -> DeploymentResult:
    return DeploymentResult(
        success=False,
        deployment_id=deployment_id,
        execution_id=execution_id,
        status=status,
        message=message,
        error=error,
        **extra,
    )


def health_step(name: str, result: "HealthCheckResult") -> ValidationStepResult:
    """Turn a health probe result into a validation step."""
    return ValidationStepResult(
        name=name, success=result.success, message=result.message, duration=result.duration
    )


def performance_step(
    name: str,
    snapshot: MetricsSnapshot,
    max_error_rate: float,
    max_response_time_ms: float,
) -> ValidationStepResult:
    """Check a snapshot against error rate and response time limits."""
    problems: builtins.list[str] = []
    if snapshot.error_rate > max_error_rate:
        problems.append(f"error rate {snapshot.error_rate:.2%} exceeds {max_error_rate:.2%}")
    if snapshot.response_time > max_response_time_ms:
        problems.append(
            f"response time {snapshot.response_time:.0f}ms exceeds {max_response_time_ms:.0f}ms"
        )
    if problems:
        return ValidationStepResult.failed(name, f"Performance check failed: {', '.join(problems)}")
    return ValidationStepResult.passed(
        name,
        f"Performance within limits (error rate {snapshot.error_rate:.2%}, "
        f"response time {snapshot.response_time:.0f}ms)",
    )


def metrics_from_snapshot(
    snapshot: MetricsSnapshot | None,
    duration: float,
    success: bool,
    rollback_count: int = 0,
) -> DeploymentMetrics:
    if snapshot is None:
        return DeploymentMetrics(duration=duration, success=success, rollback_count=rollback_count)
    return DeploymentMetrics(
        duration=duration,
        resource_usage=ResourceUsage(
            cpu=snapshot.cpu,
            memory=snapshot.memory,
            network=snapshot.network,
            storage=snapshot.storage,
        ),
        performance=PerformanceMetrics(
            response_time=snapshot.response_time,
            throughput=snapshot.throughput,
            error_rate=snapshot.error_rate,
            availability=snapshot.availability,
        ),
        success=success,
        rollback_count=rollback_count,
    )
