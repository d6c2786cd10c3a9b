"""
Blue-green deployment strategy.

Deploys the new version to the idle color, validates it, moves traffic over
and only then retires the old color. A failure at any point after the switch
started puts all traffic back on the color that was serving before.
"""

import builtins
import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from ..config import OrchestratorSettings
from ..exceptions import (
    DeploymentCancelledError,
    DeploymentOrchestrationError,
    ErrorKind,
    ExecutionFailure,
    TrafficSwitchError,
)
from .base import StrategyRun, failed_result, health_step, new_execution_id, performance_step
from .enums import EnvironmentColor, ExecutionStatus, StrategyType, TrafficSwitchType
from .models import (
    CheckTarget,
    DeploymentConfig,
    DeploymentMetrics,
    DeploymentResult,
    RollbackInfo,
    TrafficDistribution,
    TrafficSwitchConfig,
)
from .validation import ValidationResult, ValidationStepResult

if TYPE_CHECKING:
    from ..managers.health import HealthCheckManager
    from ..managers.infrastructure import InfrastructureAdapter
    from ..managers.metrics import MetricsCollector
    from .state import DeploymentControl, DeploymentStateRepository

logger = logging.getLogger(__name__)


class BlueGreenStrategy:
    """Blue-green deployment executor."""

    strategy_type = StrategyType.BLUE_GREEN
    supports_pause = False

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
        """Execute blue-green deployment."""
        deployment_id = config.id
        execution_id = new_execution_id()
        blue_green = config.blue_green
        if blue_green is None or blue_green.switch_traffic is None:
            return failed_result(
                deployment_id,
                execution_id,
                "Blue-green strategy configuration with traffic switch settings is required",
                ErrorKind.CONFIGURATION,
            )

        run = StrategyRun(config)
        self._runs[deployment_id] = run
        source = self.state.get_active_color(deployment_id) or EnvironmentColor.BLUE
        target = source.opposite
        if self.state.get_traffic(deployment_id) is None:
            self.state.set_traffic(deployment_id, TrafficDistribution.all_on(source))
        control = self.state.control_for(deployment_id)
        logger.info(f"Starting blue-green deployment {deployment_id}: {source.value} -> {target.value}")

        switch_started = False
        try:
            await self.infrastructure.deploy_environment(deployment_id, target, config)
            await control.sleep(blue_green.warmup_duration)

            validation = await self.validate_environment(deployment_id, target)
            if not validation.success:
                raise ExecutionFailure(
                    f"Environment validation failed: {validation.failure_summary()}", deployment_id
                )

            switch_started = True
            await self._switch_traffic(deployment_id, source, target, blue_green.switch_traffic, control)

            validation = await self.validate_environment(deployment_id, target)
            if not validation.success:
                raise ExecutionFailure(
                    f"Post-switch validation failed: {validation.failure_summary()}", deployment_id
                )

            self.state.commit_switch(deployment_id, target, source)
            await self._cleanup(deployment_id, source)
            run.finish(True)
            logger.info(f"Blue-green deployment {deployment_id} completed, {target.value} is active")
            return DeploymentResult(
                success=True,
                deployment_id=deployment_id,
                execution_id=execution_id,
                status=ExecutionStatus.COMPLETED,
                message=f"Blue-green deployment completed, traffic switched to {target.value}",
            )

        except DeploymentCancelledError as e:
            run.finish(False)
            logger.info(f"Blue-green deployment {deployment_id} cancelled")
            if switch_started:
                await self._restore_traffic(deployment_id, source)
            return failed_result(
                deployment_id, execution_id, e.message, e.error_kind, ExecutionStatus.CANCELLED
            )
        except DeploymentOrchestrationError as e:
            run.finish(False)
            logger.error(f"Blue-green deployment {deployment_id} failed: {e.message}")
            extra = {}
            if switch_started:
                restored = await self._restore_traffic(deployment_id, source)
                extra["rollback_info"] = RollbackInfo(
                    triggered=True,
                    reason=e.message,
                    previous_version=config.previous_version or source.value,
                    success=restored,
                )
            return failed_result(
                deployment_id, execution_id, f"Blue-green deployment failed: {e.message}", e.error_kind, **extra
            )
        except Exception as e:
            run.finish(False)
            logger.exception(f"Blue-green deployment {deployment_id} failed unexpectedly")
            if switch_started:
                await self._restore_traffic(deployment_id, source)
            return failed_result(
                deployment_id, execution_id, f"Blue-green deployment failed: {e}", ErrorKind.EXECUTION
            )

    async def _apply(self, deployment_id: str, distribution: TrafficDistribution) -> None:
        await self.infrastructure.set_traffic_weights(deployment_id, distribution)
        self.state.set_traffic(deployment_id, distribution)

    async def _switch_traffic(
        self,
        deployment_id: str,
        source: EnvironmentColor,
        target: EnvironmentColor,
        switch: TrafficSwitchConfig,
        control: "DeploymentControl",
    ) -> None:
        if switch.type is TrafficSwitchType.IMMEDIATE or not switch.steps:
            logger.info(f"Switching all traffic to {target.value}")
            await self._apply(deployment_id, TrafficDistribution.all_on(target))
            return

        for step in switch.steps:
            distribution = TrafficDistribution.towards(target, step.percentage)
            logger.info(f"Shifting {distribution.percentage_for(target):g}% of traffic to {target.value}")
            await self._apply(deployment_id, distribution)
            await control.sleep(step.duration)

            if step.validation:
                validation = await self.validate_environment(deployment_id, target)
                if not validation.success:
                    raise TrafficSwitchError(
                        f"Traffic switch validation failed at {step.percentage:g}%: "
                        f"{validation.failure_summary()}",
                        percentage=step.percentage,
                        deployment_id=deployment_id,
                    )

        current = self.state.get_traffic(deployment_id)
        if current.percentage_for(target) < 100.0:
            await self._apply(deployment_id, TrafficDistribution.all_on(target))

    async def _restore_traffic(self, deployment_id: str, color: EnvironmentColor) -> bool:
        """Send all traffic back to ``color``; returns False if that fails."""
        try:
            await self._apply(deployment_id, TrafficDistribution.all_on(color))
        except Exception:
            logger.exception(f"Failed to restore traffic to {color.value} for deployment {deployment_id}")
            return False
        logger.info(f"Traffic restored to {color.value} for deployment {deployment_id}")
        return True

    async def _cleanup(self, deployment_id: str, color: EnvironmentColor) -> None:
        """Retire the old color. Failures are logged and traffic stays where it is."""
        try:
            await self.infrastructure.cleanup_environment(deployment_id, color)
        except Exception:
            logger.exception(f"Failed to clean up {color.value} environment for deployment {deployment_id}")

    async def validate_environment(self, deployment_id: str, color: EnvironmentColor) -> ValidationResult:
        """Health, performance and connectivity checks for one color."""
        target = CheckTarget(deployment_id=deployment_id, color=color)
        health = await self.health_checks.check(target)
        snapshot = await self.metrics_collector.collect(replace(target, check="performance"))
        connectivity = await self.health_checks.check(replace(target, check="connectivity"))
        run = self._runs.get(deployment_id)
        if run is not None:
            run.snapshot = snapshot

        return ValidationResult.from_steps(
            [
                health_step("health-check", health),
                performance_step(
                    "performance-check",
                    snapshot,
                    self.settings.environment_max_error_rate,
                    self.settings.environment_max_response_time_ms,
                ),
                health_step("connectivity-check", connectivity),
            ],
            recommendations=[f"Investigate the {color.value} environment before switching traffic"],
        )

    def validate_config(self, config: DeploymentConfig) -> ValidationResult:
        """Validate blue-green strategy configuration."""
        blue_green = config.blue_green
        if blue_green is None:
            return ValidationResult.from_steps(
                [
                    ValidationStepResult.failed(
                        "strategy-config", "Blue-green strategy configuration is required"
                    )
                ],
                recommendations=["Provide a blue-green configuration"],
            )

        steps = [ValidationStepResult.passed("strategy-config", "Blue-green strategy configuration present")]
        recommendations = []

        switch = blue_green.switch_traffic
        if switch is None:
            steps.append(
                ValidationStepResult.failed("traffic-switch-config", "Traffic switch configuration is required")
            )
            recommendations.append("Configure switch_traffic as immediate or gradual")
        elif switch.type is TrafficSwitchType.GRADUAL and not switch.steps:
            steps.append(
                ValidationStepResult.failed(
                    "traffic-switch-config", "Gradual traffic switch requires at least one step"
                )
            )
            recommendations.append("Add traffic switch steps or use an immediate switch")
        elif any(not 0 <= step.percentage <= 100 for step in switch.steps):
            steps.append(
                ValidationStepResult.failed(
                    "traffic-switch-config", "Traffic switch percentages must be between 0 and 100"
                )
            )
            recommendations.append("Keep traffic switch percentages between 0 and 100")
        else:
            steps.append(
                ValidationStepResult.passed("traffic-switch-config", f"{switch.type.value} traffic switch configured")
            )

        if blue_green.warmup_duration >= 0:
            steps.append(
                ValidationStepResult.passed("warmup-duration", f"Warmup duration is {blue_green.warmup_duration:g}s")
            )
        else:
            steps.append(ValidationStepResult.failed("warmup-duration", "Warmup duration cannot be negative"))
            recommendations.append("Set warmup duration to zero or more")

        if config.infrastructure.networking.load_balancer is not None:
            steps.append(ValidationStepResult.passed("load-balancer", "Load balancer configured"))
        else:
            steps.append(
                ValidationStepResult.failed(
                    "load-balancer", "Load balancer configuration is required for blue-green deployment"
                )
            )
            recommendations.append("Configure a load balancer to switch traffic between environments")

        odd = [c.name for c in config.components if (c.replicas or 0) % 2 != 0]
        if odd:
            steps.append(
                ValidationStepResult.failed(
                    "component-replicas",
                    f"Components need an even replica count for symmetric environments: {', '.join(odd)}",
                )
            )
            recommendations.append("Use even replica counts so blue and green fleets match")
        else:
            steps.append(ValidationStepResult.passed("component-replicas", "Replica counts are even"))

        return ValidationResult.from_steps(steps, recommendations)

    def get_metrics(self, deployment_id: str) -> DeploymentMetrics:
        run = self._runs.get(deployment_id)
        return run.metrics() if run else DeploymentMetrics()

    def get_traffic_distribution(self, deployment_id: str) -> TrafficDistribution | None:
        return self.state.get_traffic(deployment_id)

    def get_traffic_history(self, deployment_id: str) -> builtins.list[TrafficDistribution]:
        return self.state.get_traffic_history(deployment_id)

    def get_active_environment(self, deployment_id: str) -> EnvironmentColor | None:
        return self.state.get_active_color(deployment_id)

    async def rollback(
        self,
        deployment_id: str,
        target_version: str | None = None,
        reason: str = "Manual rollback requested",
    ) -> DeploymentResult:
        """Switch traffic back to the color that served before the last committed switch."""
        execution_id = new_execution_id()
        active = self.state.get_active_color(deployment_id)
        if active is None:
            return failed_result(
                deployment_id, execution_id, "No active environment found for rollback", ErrorKind.ROLLBACK
            )
        previous = self.state.get_rollback_color(deployment_id)
        if previous is None:
            return failed_result(
                deployment_id,
                execution_id,
                f"No committed traffic switch to roll back, traffic stays on {active.value}",
                ErrorKind.ROLLBACK,
            )

        run = self._runs.get(deployment_id)
        previous_version = target_version or (run.config.previous_version if run else None) or previous.value
        logger.info(f"Blue-green rollback for {deployment_id}: {active.value} -> {previous.value}")

        if not await self._restore_traffic(deployment_id, previous):
            return failed_result(
                deployment_id,
                execution_id,
                f"Blue-green rollback failed: could not switch traffic to {previous.value}",
                ErrorKind.ROLLBACK,
                rollback_info=RollbackInfo(
                    triggered=True, reason=reason, previous_version=previous_version, success=False
                ),
            )

        self.state.revert_switch(deployment_id)
        if run is not None:
            run.rollback_count += 1
        return DeploymentResult(
            success=True,
            deployment_id=deployment_id,
            execution_id=execution_id,
            status=ExecutionStatus.ROLLED_BACK,
            message=f"Blue-green deployment rolled back, traffic on {previous.value}",
            rollback_info=RollbackInfo(
                triggered=True, reason=reason, previous_version=previous_version, success=True
            ),
        )
