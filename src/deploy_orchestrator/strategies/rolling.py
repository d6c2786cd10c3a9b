"""
Rolling deployment strategy.

Replaces each component's replicas in consecutive batches, validating every
batch before moving on. Pause holds the next batch; cancel is observed before
a batch starts and during the pause between batches.
"""

import builtins
import logging
import math
import re
from collections.abc import Iterable
from dataclasses import replace
from typing import TYPE_CHECKING

from ..config import OrchestratorSettings
from ..exceptions import (
    ConfigurationError,
    DeadlineExceededError,
    DeploymentCancelledError,
    DeploymentOrchestrationError,
    ErrorKind,
    ExecutionFailure,
)
from .base import StrategyRun, failed_result, health_step, new_execution_id, performance_step
from .enums import ExecutionStatus, StrategyType
from .models import (
    CheckTarget,
    ComponentDeploymentConfig,
    DeploymentBatch,
    DeploymentConfig,
    DeploymentMetrics,
    DeploymentResult,
    RollbackInfo,
    RollingProgress,
)
from .validation import ValidationResult, ValidationStepResult

if TYPE_CHECKING:
    from ..managers.health import HealthCheckManager
    from ..managers.infrastructure import InfrastructureAdapter
    from ..managers.metrics import MetricsCollector
    from .state import DeploymentStateRepository

logger = logging.getLogger(__name__)

_PERCENTAGE_RE = re.compile(r"^\s*(\d+)\s*%\s*$")
_COUNT_RE = re.compile(r"^\s*(\d+)\s*$")


def parse_quantity(value: int | str) -> tuple[int, bool] | None:
    """Parse a replica count or ``"NN%"``; returns ``(amount, is_percentage)``.

    Returns None for anything that is not a positive integer or percentage.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return (value, False) if value > 0 else None
    if isinstance(value, str):
        match = _PERCENTAGE_RE.match(value)
        if match:
            amount = int(match.group(1))
            return (amount, True) if amount > 0 else None
        match = _COUNT_RE.match(value)
        if match:
            amount = int(match.group(1))
            return (amount, False) if amount > 0 else None
    return None


def _require_quantity(value: int | str, label: str) -> tuple[int, bool]:
    parsed = parse_quantity(value)
    if parsed is None:
        raise ConfigurationError(f"Invalid {label}: {value!r}")
    return parsed


def calculate_batch_size(total_replicas: int, batch_size: int | str) -> int:
    """Replicas per batch for one component."""
    amount, is_percentage = _require_quantity(batch_size, "batch size")
    if is_percentage:
        return max(1, min(total_replicas, math.ceil(amount * total_replicas / 100)))
    return max(1, min(amount, total_replicas))


def resolve_max_surge(total_replicas: int, max_surge: int | str) -> int:
    amount, is_percentage = _require_quantity(max_surge, "max surge")
    if is_percentage:
        return max(1, math.ceil(amount * total_replicas / 100))
    return amount


def resolve_max_unavailable(total_replicas: int, max_unavailable: int | str) -> int:
    amount, is_percentage = _require_quantity(max_unavailable, "max unavailable")
    if is_percentage:
        return max(1, math.floor(amount * total_replicas / 100))
    return amount


def calculate_deployment_batches(
    components: Iterable[ComponentDeploymentConfig],
    batch_size: int | str,
    max_surge: int | str = 1,
    max_unavailable: int | str = 1,
) -> builtins.list[DeploymentBatch]:
    """Split every component into consecutive replica ranges.

    Components are not interleaved: all batches of the first component come
    before any batch of the second.
    """
    batches = []
    for component in components:
        total = component.replicas or 1
        size = calculate_batch_size(total, batch_size)
        surge = resolve_max_surge(total, max_surge)
        unavailable = resolve_max_unavailable(total, max_unavailable)
        for number, start in enumerate(range(0, total, size), start=1):
            end = min(start + size, total) - 1
            batches.append(
                DeploymentBatch(
                    component=component.name,
                    batch_number=number,
                    replicas=end - start + 1,
                    total_replicas=total,
                    start_replica=start,
                    end_replica=end,
                    max_surge=surge,
                    max_unavailable=unavailable,
                )
            )
    return batches


class RollingStrategy:
    """Rolling update executor."""

    strategy_type = StrategyType.ROLLING
    supports_pause = True

    def __init__(
        self,
        state: "DeploymentStateRepository",
        infrastructure: "InfrastructureAdapter",
        health_checks: "HealthCheckManager",
        metrics_collector: "MetricsCollector",
        settings: OrchestratorSettings | None = None,
    ):
        self.state = state
        self.infrastructure = infrastructure
        self.health_checks = health_checks
        self.metrics_collector = metrics_collector
        self.settings = settings or OrchestratorSettings()
        self._runs: builtins.dict[str, StrategyRun] = {}

    async def execute(self, config: DeploymentConfig) -> DeploymentResult:
        """Execute rolling deployment."""
        deployment_id = config.id
        execution_id = new_execution_id()
        rolling = config.rolling
        if rolling is None:
            return failed_result(
                deployment_id,
                execution_id,
                "Rolling strategy configuration is required",
                ErrorKind.CONFIGURATION,
            )

        run = StrategyRun(config)
        self._runs[deployment_id] = run
        total_replicas = config.total_replicas
        self.state.set_rolling_progress(
            deployment_id,
            RollingProgress(
                total_replicas=total_replicas,
                ready_replicas=total_replicas,
                available_replicas=total_replicas,
            ),
        )
        control = self.state.control_for(deployment_id)
        logger.info(f"Starting rolling deployment {deployment_id} ({total_replicas} replicas)")

        try:
            batches = calculate_deployment_batches(
                config.components, rolling.batch_size, rolling.max_surge, rolling.max_unavailable
            )
            self._update_progress(deployment_id, total_batches=len(batches))

            for index, batch in enumerate(batches):
                await control.wait_if_paused(self.settings.pause_poll_interval)
                await self._deploy_batch(config, batch)

                remaining = index < len(batches) - 1
                if remaining and rolling.pause_between_batches > 0:
                    await control.sleep(rolling.pause_between_batches)

                elapsed = run.duration
                if elapsed > rolling.progress_deadline:
                    raise DeadlineExceededError(
                        f"Rolling deployment exceeded progress deadline of "
                        f"{rolling.progress_deadline:g}s (elapsed {elapsed:.2f}s)",
                        deadline=rolling.progress_deadline,
                        elapsed=elapsed,
                        deployment_id=deployment_id,
                    )

            self._update_progress(
                deployment_id,
                updated_replicas=total_replicas,
                ready_replicas=total_replicas,
                available_replicas=total_replicas,
                unavailable_replicas=0,
                percentage=100.0,
            )
            run.finish(True)
            logger.info(f"Rolling deployment {deployment_id} completed in {len(batches)} batches")
            return DeploymentResult(
                success=True,
                deployment_id=deployment_id,
                execution_id=execution_id,
                status=ExecutionStatus.COMPLETED,
                message=f"Rolling deployment completed: {total_replicas} replicas updated in {len(batches)} batches",
            )

        except DeploymentCancelledError as e:
            run.finish(False)
            logger.info(f"Rolling deployment {deployment_id} cancelled")
            return failed_result(
                deployment_id, execution_id, e.message, e.error_kind, ExecutionStatus.CANCELLED
            )
        except DeploymentOrchestrationError as e:
            run.finish(False)
            logger.error(f"Rolling deployment {deployment_id} failed: {e.message}")
            return failed_result(
                deployment_id, execution_id, f"Rolling deployment failed: {e.message}", e.error_kind
            )
        except Exception as e:
            run.finish(False)
            logger.exception(f"Rolling deployment {deployment_id} failed unexpectedly")
            return failed_result(
                deployment_id, execution_id, f"Rolling deployment failed: {e}", ErrorKind.EXECUTION
            )

    async def _deploy_batch(self, config: DeploymentConfig, batch: DeploymentBatch) -> None:
        deployment_id = config.id
        progress = self.state.get_rolling_progress(deployment_id)
        in_flight = min(batch.replicas, batch.max_unavailable)
        self._update_progress(
            deployment_id,
            ready_replicas=progress.total_replicas - in_flight,
            available_replicas=progress.total_replicas - in_flight,
            unavailable_replicas=in_flight,
        )

        logger.info(
            f"Deploying batch {batch.batch_number} of {batch.component} "
            f"(replicas {batch.start_replica}-{batch.end_replica})"
        )
        component = next((c for c in config.components if c.name == batch.component), None)
        version = (component.version if component else None) or config.version
        await self.infrastructure.deploy_batch(deployment_id, batch, version)

        ready = await self.infrastructure.wait_for_ready(deployment_id, batch, self.settings.ready_timeout)
        if not ready:
            raise ExecutionFailure(
                f"Batch {batch.batch_number} of {batch.component} did not become ready",
                deployment_id,
            )

        validation = await self.validate_batch(config, batch)
        if not validation.success:
            raise ExecutionFailure(
                f"Batch {batch.batch_number} of {batch.component} failed validation: "
                f"{validation.failure_summary()}",
                deployment_id,
            )

        progress = self.state.get_rolling_progress(deployment_id)
        updated = progress.updated_replicas + batch.replicas
        self._update_progress(
            deployment_id,
            updated_replicas=updated,
            ready_replicas=progress.total_replicas,
            available_replicas=progress.total_replicas,
            unavailable_replicas=0,
            percentage=updated / progress.total_replicas * 100 if progress.total_replicas else 100.0,
            completed_batches=progress.completed_batches + 1,
        )

    async def validate_batch(self, config: DeploymentConfig, batch: DeploymentBatch) -> ValidationResult:
        """Health and performance checks for a freshly deployed batch."""
        target = CheckTarget(deployment_id=config.id, component=batch.component, batch=batch)
        health = await self.health_checks.check(target)
        snapshot = await self.metrics_collector.collect(replace(target, check="performance"))
        run = self._runs.get(config.id)
        if run is not None:
            run.snapshot = snapshot
        return ValidationResult.from_steps(
            [
                health_step("batch-health", health),
                performance_step(
                    "batch-performance",
                    snapshot,
                    self.settings.batch_max_error_rate,
                    self.settings.batch_max_response_time_ms,
                ),
            ],
            recommendations=[f"Inspect batch {batch.batch_number} of {batch.component} before retrying"],
        )

    def _update_progress(self, deployment_id: str, **changes) -> None:
        progress = self.state.get_rolling_progress(deployment_id)
        self.state.set_rolling_progress(deployment_id, replace(progress, **changes))

    def validate_config(self, config: DeploymentConfig) -> ValidationResult:
        """Validate rolling strategy configuration."""
        rolling = config.rolling
        if rolling is None:
            return ValidationResult.from_steps(
                [ValidationStepResult.failed("strategy-config", "Rolling strategy configuration is required")],
                recommendations=["Provide a rolling configuration"],
            )

        steps = [ValidationStepResult.passed("strategy-config", "Rolling strategy configuration present")]
        recommendations = []

        for name, label, value in (
            ("batch-size", "Batch size", rolling.batch_size),
            ("max-unavailable", "Max unavailable", rolling.max_unavailable),
            ("max-surge", "Max surge", rolling.max_surge),
        ):
            if parse_quantity(value) is not None:
                steps.append(ValidationStepResult.passed(name, f"{label} is valid: {value}"))
            else:
                steps.append(
                    ValidationStepResult.failed(
                        name, f"{label} must be a positive integer or percentage, got {value!r}"
                    )
                )
                recommendations.append(f"Set {name} to a positive integer or a value such as '25%'")

        if rolling.progress_deadline > 0:
            steps.append(
                ValidationStepResult.passed(
                    "progress-deadline", f"Progress deadline is {rolling.progress_deadline:g}s"
                )
            )
        else:
            steps.append(ValidationStepResult.failed("progress-deadline", "Progress deadline must be positive"))
            recommendations.append("Set a positive progress deadline")

        if rolling.pause_between_batches >= 0:
            steps.append(
                ValidationStepResult.passed(
                    "pause-between-batches", f"Pause between batches is {rolling.pause_between_batches:g}s"
                )
            )
        else:
            steps.append(
                ValidationStepResult.failed("pause-between-batches", "Pause between batches cannot be negative")
            )
            recommendations.append("Set pause between batches to zero or more")

        too_small = [c.name for c in config.components if (c.replicas or 0) < 2]
        if too_small:
            steps.append(
                ValidationStepResult.failed(
                    "component-replicas",
                    f"Components need at least 2 replicas for a rolling update: {', '.join(too_small)}",
                )
            )
            recommendations.append("Run at least 2 replicas per component to keep capacity during the update")
        else:
            steps.append(
                ValidationStepResult.passed("component-replicas", "All components have at least 2 replicas")
            )

        return ValidationResult.from_steps(steps, recommendations)

    def get_metrics(self, deployment_id: str) -> DeploymentMetrics:
        run = self._runs.get(deployment_id)
        return run.metrics() if run else DeploymentMetrics()

    def get_rolling_progress(self, deployment_id: str) -> RollingProgress | None:
        return self.state.get_rolling_progress(deployment_id)

    def pause_rolling(self, deployment_id: str) -> bool:
        """Hold the deployment before its next batch."""
        self.state.control_for(deployment_id).pause()
        logger.info(f"Rolling deployment {deployment_id} paused")
        return True

    def resume_rolling(self, deployment_id: str) -> bool:
        self.state.control_for(deployment_id).resume()
        logger.info(f"Rolling deployment {deployment_id} resumed")
        return True

    pause = pause_rolling
    resume = resume_rolling

    async def rollback(
        self,
        deployment_id: str,
        target_version: str | None = None,
        reason: str = "Manual rollback requested",
    ) -> DeploymentResult:
        """Restore the previous version and reset progress."""
        execution_id = new_execution_id()
        progress = self.state.get_rolling_progress(deployment_id)
        if progress is None:
            return failed_result(
                deployment_id,
                execution_id,
                f"No rolling progress found for deployment {deployment_id}",
                ErrorKind.ROLLBACK,
            )

        run = self._runs.get(deployment_id)
        previous_version = target_version or (run.config.previous_version if run else None)
        logger.info(f"Rolling back deployment {deployment_id} to {previous_version or 'previous version'}")

        try:
            await self.infrastructure.restore_previous_version(deployment_id, previous_version)
        except Exception as e:
            logger.exception(f"Rolling rollback failed for deployment {deployment_id}")
            return failed_result(
                deployment_id,
                execution_id,
                f"Rolling rollback failed: {e}",
                ErrorKind.ROLLBACK,
                rollback_info=RollbackInfo(
                    triggered=True,
                    reason=reason,
                    previous_version=previous_version or "previous",
                    success=False,
                ),
            )

        total = progress.total_replicas
        self.state.set_rolling_progress(
            deployment_id,
            RollingProgress(
                total_replicas=total,
                updated_replicas=0,
                ready_replicas=total,
                available_replicas=total,
                unavailable_replicas=0,
                percentage=0.0,
                start_time=progress.start_time,
                total_batches=progress.total_batches,
            ),
        )
        if run is not None:
            run.rollback_count += 1

        return DeploymentResult(
            success=True,
            deployment_id=deployment_id,
            execution_id=execution_id,
            status=ExecutionStatus.ROLLED_BACK,
            message="Rolling deployment rolled back successfully",
            rollback_info=RollbackInfo(
                triggered=True,
                reason=reason,
                previous_version=previous_version or "previous",
                success=True,
            ),
        )
