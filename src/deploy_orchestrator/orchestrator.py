"""Main deployment orchestration engine."""

import asyncio
import builtins
import logging
import time
from dataclasses import replace
from typing import Any

from prometheus_client import CollectorRegistry

from .config import OrchestratorSettings
from .exceptions import ErrorKind
from .managers.approval import ApprovalManager
from .managers.health import HealthCheckManager
from .managers.infrastructure import InfrastructureAdapter, InMemoryInfrastructureAdapter
from .managers.metrics import MetricsCollector, StaticMetricsCollector
from .managers.notification import NotificationManager
from .managers.promotion import PromotionManager
from .managers.rollback import RollbackManager
from .managers.validation import DeploymentValidator
from .observability.logging import deployment_context
from .observability.metrics import DeploymentMetricsRecorder
from .observability.tracing import deployment_span, mark_span
from .strategies.base import PausableStrategy, StrategyExecutor, new_execution_id
from .strategies.blue_green import BlueGreenStrategy
from .strategies.canary import CanaryStrategy
from .strategies.enums import ApprovalStatus, DeploymentEnvironment, ExecutionStatus, StrategyType
from .strategies.models import (
    DeploymentConfig,
    DeploymentErrorRecord,
    DeploymentExecution,
    DeploymentFilter,
    DeploymentLog,
    DeploymentMetrics,
    DeploymentProgress,
    DeploymentResult,
    OperationResult,
    PromotionResult,
    utc_now,
)
from .strategies.rolling import RollingStrategy
from .strategies.state import DeploymentStateRepository
from .strategies.validation import ValidationResult

logger = logging.getLogger(__name__)

PHASES = ("validation", "approval", "pre-deployment", "execution", "post-deployment", "monitoring")

_ACTIVE = (ExecutionStatus.PENDING, ExecutionStatus.IN_PROGRESS, ExecutionStatus.PAUSED)

_EVENTS = {
    ExecutionStatus.COMPLETED: "deployment_completed",
    ExecutionStatus.FAILED: "deployment_failed",
    ExecutionStatus.CANCELLED: "deployment_cancelled",
    ExecutionStatus.ROLLED_BACK: "deployment_rolled_back",
}


class DeploymentOrchestrator:
    """Main deployment orchestration engine.

    Owns the execution registry and the per-deployment state repository,
    selects the strategy for each config and drives it through validation,
    approval, execution and post-deployment checks. Public operations return
    result records instead of raising.
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        infrastructure: InfrastructureAdapter | None = None,
        metrics_collector: MetricsCollector | None = None,
        health_checks: HealthCheckManager | None = None,
        approvals: ApprovalManager | None = None,
        notifications: NotificationManager | None = None,
        rollback_manager: RollbackManager | None = None,
        metrics_registry: CollectorRegistry | None = None,
    ):
        self.settings = settings or OrchestratorSettings()
        self.state = DeploymentStateRepository(history_size=self.settings.history_size)

        # Collaborators
        self.infrastructure = infrastructure or InMemoryInfrastructureAdapter()
        self.metrics_collector = metrics_collector or StaticMetricsCollector()
        self.health_checks = health_checks or HealthCheckManager(self.settings.health_check_interval)
        self.approvals = approvals or ApprovalManager(self.settings.approval_poll_interval)
        self.notifications = notifications or NotificationManager()
        self.rollback_manager = rollback_manager or RollbackManager(self.settings.history_size)
        self.validator = DeploymentValidator(self.health_checks, self.metrics_collector, self.settings)
        self.promotion_manager = PromotionManager(self.settings)
        self.metrics = DeploymentMetricsRecorder(
            self.settings.service_name, metrics_registry, enabled=self.settings.metrics_enabled
        )

        self.strategies: builtins.dict[StrategyType, StrategyExecutor] = {
            StrategyType.ROLLING: RollingStrategy(
                self.state, self.infrastructure, self.health_checks, self.metrics_collector, self.settings
            ),
            StrategyType.CANARY: CanaryStrategy(
                self.state, self.infrastructure, self.metrics_collector, self.approvals, self.settings
            ),
            StrategyType.BLUE_GREEN: BlueGreenStrategy(
                self.state, self.infrastructure, self.health_checks, self.metrics_collector, self.settings
            ),
        }

        self.executions: builtins.dict[str, DeploymentExecution] = {}
        self._tasks: builtins.dict[str, asyncio.Task] = {}

    def get_strategy(self, strategy_type: StrategyType) -> StrategyExecutor:
        return self.strategies[strategy_type]

    # Deployment lifecycle

    async def create_deployment(self, config: DeploymentConfig) -> DeploymentResult:
        """Validate and run a deployment to completion."""
        registered = self._register(config)
        if isinstance(registered, DeploymentResult):
            return registered
        return await self._run(registered)

    def start_deployment(self, config: DeploymentConfig) -> "asyncio.Task[DeploymentResult]":
        """Register a deployment and run it in a background task.

        The deployment is visible to status, pause, resume and cancel as soon
        as this returns. Must be called from a running event loop.
        """
        registered = self._register(config)
        if isinstance(registered, DeploymentResult):
            rejection = registered

            async def rejected() -> DeploymentResult:
                return rejection

            return asyncio.create_task(rejected())

        task = asyncio.create_task(self._run(registered), name=f"deployment-{config.id}")
        self._tasks[config.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(config.id, None))
        return task

    def _register(self, config: DeploymentConfig) -> DeploymentExecution | DeploymentResult:
        existing = self.executions.get(config.id)
        if existing is not None and existing.status in _ACTIVE:
            return DeploymentResult(
                success=False,
                deployment_id=config.id,
                execution_id=existing.id,
                status=existing.status,
                message=f"Deployment {config.id} is already running",
                error=ErrorKind.INVALID_STATE,
            )

        execution = DeploymentExecution(
            id=new_execution_id(),
            deployment_id=config.id,
            config=config,
            progress=DeploymentProgress(total_steps=len(PHASES)),
        )
        self.executions[config.id] = execution
        self.state.reset_control(config.id)
        self._log(execution, "info", f"Deployment registered with {config.strategy.value} strategy")
        return execution

    async def _run(self, execution: DeploymentExecution) -> DeploymentResult:
        config = execution.config
        strategy = self.strategies[config.strategy]
        execution.status = ExecutionStatus.IN_PROGRESS
        self.metrics.deployment_started()
        started = time.monotonic()

        with deployment_context(config.id):
            await self.notifications.notify(
                "deployment_started", config.id, f"Deployment {config.id} started", strategy=config.strategy.value
            )
            try:
                result = await self._run_phases(execution, strategy)
            except Exception as e:
                logger.exception(f"Deployment {config.id} failed unexpectedly")
                result = self._result(execution, ExecutionStatus.FAILED, f"Deployment failed: {e}", ErrorKind.EXECUTION)
            return await self._finish(execution, strategy, result, time.monotonic() - started)

    async def _run_phases(self, execution: DeploymentExecution, strategy: StrategyExecutor) -> DeploymentResult:
        config = execution.config
        control = self.state.control_for(config.id)

        self._advance(execution, "validation", "Validating deployment configuration")
        validation = ValidationResult.combine(
            self.validator.validate_configuration(config), strategy.validate_config(config)
        )
        if not validation.success:
            return self._result(
                execution,
                ExecutionStatus.FAILED,
                f"Configuration validation failed: {validation.failure_summary()}",
                ErrorKind.CONFIGURATION,
                validation=validation,
            )

        requirement = next((a for a in config.approvals if a.stage == config.environment.value), None)
        if requirement is not None:
            self._advance(execution, "approval", f"Waiting for approval to deploy to {config.environment.value}")
            request = await self.approvals.request_approval(
                config.id, config.environment.value, requirement.approvers
            )
            await self.notifications.notify(
                "approval_requested",
                config.id,
                f"Approval required to deploy {config.id} to {config.environment.value}",
                request_id=request.request_id,
                approvers=requirement.approvers,
            )
            status = await self.approvals.wait_for_decision(request.request_id, self.settings.approval_timeout)
            if control.cancelled:
                return self._cancelled(execution)
            if status is not ApprovalStatus.APPROVED:
                return self._result(
                    execution,
                    ExecutionStatus.FAILED,
                    f"Deployment to {config.environment.value} was not approved ({status.value})",
                    ErrorKind.EXECUTION,
                )

        if config.validation.pre_deployment:
            self._advance(execution, "pre-deployment", "Running pre-deployment checks")
            pre = await self.validator.run_steps(config.id, config.validation.pre_deployment, "pre-deployment")
            if not pre.success:
                return self._result(
                    execution,
                    ExecutionStatus.FAILED,
                    f"Pre-deployment validation failed: {pre.failure_summary()}",
                    ErrorKind.EXECUTION,
                    validation=pre,
                )

        if control.cancelled:
            return self._cancelled(execution)

        self._advance(execution, "execution", f"Executing {config.strategy.value} strategy")
        with deployment_span(
            "deployment.execute",
            config.id,
            enabled=self.settings.tracing_enabled,
            strategy=config.strategy.value,
            environment=config.environment.value,
        ) as span:
            result = await strategy.execute(config)
            mark_span(span, result.success, result.message)
        if not result.success:
            return result

        if config.validation.post_deployment:
            self._advance(execution, "post-deployment", "Running post-deployment checks")
            post = await self.validator.run_steps(config.id, config.validation.post_deployment, "post-deployment")
            if not post.success:
                return await self._handle_post_validation_failure(execution, strategy, post)

        self._advance(execution, "monitoring", "Starting health monitoring")
        self.health_checks.start_monitoring(config.id, self.settings.health_check_interval)
        return result

    async def _handle_post_validation_failure(
        self, execution: DeploymentExecution, strategy: StrategyExecutor, validation: ValidationResult
    ) -> DeploymentResult:
        config = execution.config
        message = f"Post-deployment validation failed: {validation.failure_summary()}"
        if not (config.rollback.enabled and config.rollback.automatic):
            return self._result(execution, ExecutionStatus.FAILED, message, ErrorKind.EXECUTION, validation=validation)

        self._log(execution, "warning", f"{message}; rolling back automatically")
        rollback = await self._rollback(execution, strategy, None, reason=message)
        return self._result(
            execution,
            ExecutionStatus.ROLLED_BACK if rollback.success else ExecutionStatus.FAILED,
            f"{message}; automatic rollback {'succeeded' if rollback.success else 'failed'}",
            ErrorKind.EXECUTION if rollback.success else ErrorKind.ROLLBACK,
            validation=validation,
            rollback_info=rollback.rollback_info,
        )

    async def _finish(
        self,
        execution: DeploymentExecution,
        strategy: StrategyExecutor,
        result: DeploymentResult,
        duration: float,
    ) -> DeploymentResult:
        config = execution.config
        metrics = replace(
            strategy.get_metrics(config.id),
            rollback_count=execution.rollback_count,
            success=result.success,
        )
        if not metrics.duration:
            metrics.duration = duration
        result = replace(result, execution_id=execution.id, metrics=metrics)

        execution.status = result.status
        execution.result = result
        execution.end_time = utc_now()
        execution.current_stage = result.status.value
        if result.status is ExecutionStatus.COMPLETED:
            execution.progress.completed_steps = execution.progress.total_steps
            execution.progress.percentage = 100.0
            execution.progress.current_step = "Deployment completed"
        execution.progress.estimated_time_remaining = 0.0

        if result.success:
            self._log(execution, "info", result.message)
        else:
            execution.errors.append(
                DeploymentErrorRecord(
                    component="orchestrator",
                    kind=result.error or ErrorKind.EXECUTION,
                    message=result.message,
                    recoverable=result.status is not ExecutionStatus.FAILED,
                )
            )
            self._log(execution, "error", result.message)

        self.metrics.deployment_finished(config.strategy.value, result.status.value, duration)
        await self.notifications.notify(
            _EVENTS.get(result.status, "deployment_failed"),
            config.id,
            result.message,
            status=result.status.value,
            strategy=config.strategy.value,
        )
        return result

    def _result(
        self,
        execution: DeploymentExecution,
        status: ExecutionStatus,
        message: str,
        error: ErrorKind | None = None,
        **extra: Any,
    ) -> DeploymentResult:
        return DeploymentResult(
            success=status is ExecutionStatus.COMPLETED,
            deployment_id=execution.deployment_id,
            execution_id=execution.id,
            status=status,
            message=message,
            error=error,
            **extra,
        )

    def _cancelled(self, execution: DeploymentExecution) -> DeploymentResult:
        return self._result(execution, ExecutionStatus.CANCELLED, "Deployment cancelled", ErrorKind.CANCELLED)

    def _advance(self, execution: DeploymentExecution, stage: str, step: str) -> None:
        completed = PHASES.index(stage)
        execution.current_stage = stage
        execution.progress.completed_steps = completed
        execution.progress.current_step = step
        execution.progress.percentage = completed / len(PHASES) * 100
        self._log(execution, "info", step)

    def _log(self, execution: DeploymentExecution, level: str, message: str, **metadata: Any) -> None:
        execution.logs.append(
            DeploymentLog(level=level, component="orchestrator", message=message, metadata=metadata)
        )
        getattr(logger, level)(f"[{execution.deployment_id}] {message}")

    # Control operations

    def _not_found(self, deployment_id: str) -> OperationResult:
        return OperationResult(
            success=False,
            deployment_id=deployment_id,
            message=f"Deployment {deployment_id} not found",
            error=ErrorKind.NOT_FOUND,
        )

    def pause_deployment(self, deployment_id: str) -> OperationResult[ExecutionStatus]:
        """Hold a rolling deployment before its next batch."""
        execution = self.executions.get(deployment_id)
        if execution is None:
            return self._not_found(deployment_id)

        strategy = self.strategies[execution.config.strategy]
        if not strategy.supports_pause or not isinstance(strategy, PausableStrategy):
            return OperationResult(
                success=False,
                deployment_id=deployment_id,
                message=f"Pause is unsupported for the {execution.config.strategy.value} strategy",
                error=ErrorKind.UNSUPPORTED,
            )
        if execution.status is not ExecutionStatus.IN_PROGRESS:
            return OperationResult(
                success=False,
                deployment_id=deployment_id,
                message=f"Cannot pause a deployment that is {execution.status.value}",
                error=ErrorKind.INVALID_STATE,
            )

        strategy.pause(deployment_id)
        execution.status = ExecutionStatus.PAUSED
        self._log(execution, "info", "Deployment paused")
        return OperationResult(
            success=True, deployment_id=deployment_id, message="Deployment paused", value=execution.status
        )

    def resume_deployment(self, deployment_id: str) -> OperationResult[ExecutionStatus]:
        execution = self.executions.get(deployment_id)
        if execution is None:
            return self._not_found(deployment_id)

        strategy = self.strategies[execution.config.strategy]
        if not strategy.supports_pause or not isinstance(strategy, PausableStrategy):
            return OperationResult(
                success=False,
                deployment_id=deployment_id,
                message=f"Resume is unsupported for the {execution.config.strategy.value} strategy",
                error=ErrorKind.UNSUPPORTED,
            )
        if execution.status is not ExecutionStatus.PAUSED:
            return OperationResult(
                success=False,
                deployment_id=deployment_id,
                message=f"Cannot resume a deployment that is {execution.status.value}",
                error=ErrorKind.INVALID_STATE,
            )

        strategy.resume(deployment_id)
        execution.status = ExecutionStatus.IN_PROGRESS
        self._log(execution, "info", "Deployment resumed")
        return OperationResult(
            success=True, deployment_id=deployment_id, message="Deployment resumed", value=execution.status
        )

    def cancel_deployment(self, deployment_id: str) -> OperationResult[ExecutionStatus]:
        """Request cancellation; the run stops at its next suspension point."""
        execution = self.executions.get(deployment_id)
        if execution is None:
            return self._not_found(deployment_id)
        if execution.status.is_terminal:
            return OperationResult(
                success=False,
                deployment_id=deployment_id,
                message=f"Cannot cancel a deployment that is {execution.status.value}",
                error=ErrorKind.INVALID_STATE,
            )

        self.state.control_for(deployment_id).cancel()
        self.approvals.cancel_deployment_requests(deployment_id)
        self.health_checks.stop_monitoring(deployment_id)
        self._log(execution, "info", "Cancellation requested")
        return OperationResult(
            success=True, deployment_id=deployment_id, message="Cancellation requested", value=execution.status
        )

    async def rollback_deployment(
        self,
        deployment_id: str,
        target_version: str | None = None,
        reason: str = "Manual rollback requested",
    ) -> DeploymentResult:
        """Roll a deployment back through its strategy."""
        execution = self.executions.get(deployment_id)
        if execution is None:
            return DeploymentResult(
                success=False,
                deployment_id=deployment_id,
                execution_id="",
                status=ExecutionStatus.FAILED,
                message=f"Deployment {deployment_id} not found",
                error=ErrorKind.NOT_FOUND,
            )

        validation = self.rollback_manager.validate_rollback(
            execution, target_version, rollback_color=self.state.get_rollback_color(deployment_id)
        )
        if not validation.success:
            return DeploymentResult(
                success=False,
                deployment_id=deployment_id,
                execution_id=execution.id,
                status=execution.status,
                message=f"Rollback rejected: {validation.failure_summary()}",
                error=ErrorKind.INVALID_STATE,
                validation=validation,
            )

        self.health_checks.stop_monitoring(deployment_id)
        strategy = self.strategies[execution.config.strategy]
        with deployment_context(deployment_id):
            result = await self._rollback(execution, strategy, target_version, reason)

        if result.success:
            execution.status = ExecutionStatus.ROLLED_BACK
            execution.current_stage = ExecutionStatus.ROLLED_BACK.value
            execution.end_time = utc_now()
        else:
            execution.errors.append(
                DeploymentErrorRecord(component="rollback", kind=ErrorKind.ROLLBACK, message=result.message)
            )
        return replace(result, execution_id=execution.id)

    async def _rollback(
        self,
        execution: DeploymentExecution,
        strategy: StrategyExecutor,
        target_version: str | None,
        reason: str,
    ) -> DeploymentResult:
        config = execution.config
        with deployment_span(
            "deployment.rollback", config.id, enabled=self.settings.tracing_enabled, strategy=config.strategy.value
        ) as span:
            result = await strategy.rollback(config.id, target_version, reason=reason)
            mark_span(span, result.success, result.message)

        self.rollback_manager.record_rollback(execution, result, reason, target_version)
        self.metrics.rollback_recorded(config.strategy.value, result.success)
        if result.success:
            execution.rollback_count += 1
        self._log(execution, "info" if result.success else "error", result.message)
        await self.notifications.notify(
            "deployment_rolled_back" if result.success else "rollback_failed",
            config.id,
            result.message,
            reason=reason,
        )
        return result

    async def promote_deployment(
        self,
        deployment_id: str,
        from_environment: DeploymentEnvironment | str,
        to_environment: DeploymentEnvironment | str,
    ) -> PromotionResult:
        """Run a completed deployment's config against a later environment."""
        try:
            from_environment = DeploymentEnvironment(from_environment)
            to_environment = DeploymentEnvironment(to_environment)
        except ValueError as e:
            return PromotionResult(
                success=False,
                source_deployment_id=deployment_id,
                deployment_id=None,
                from_environment=from_environment,
                to_environment=to_environment,
                message=str(e),
                error=ErrorKind.CONFIGURATION,
            )

        execution = self.executions.get(deployment_id)
        if execution is None:
            return PromotionResult(
                success=False,
                source_deployment_id=deployment_id,
                deployment_id=None,
                from_environment=from_environment,
                to_environment=to_environment,
                message=f"Deployment {deployment_id} not found",
                error=ErrorKind.NOT_FOUND,
            )

        promotion = await self.promotion_manager.promote(
            execution.snapshot(), from_environment, to_environment, self.create_deployment
        )
        self._log(execution, "info" if promotion.success else "error", promotion.message)
        await self.notifications.notify(
            "deployment_promoted" if promotion.success else "promotion_failed",
            deployment_id,
            promotion.message,
            to_environment=to_environment.value,
        )
        return promotion

    # Queries

    def get_deployment_status(self, deployment_id: str) -> OperationResult[DeploymentExecution]:
        execution = self.executions.get(deployment_id)
        if execution is None:
            return self._not_found(deployment_id)

        snapshot = execution.snapshot()
        # While the strategy runs, its own progress is finer grained than the phase count.
        if execution.current_stage == "execution":
            percentage = self.state.progress_percentage(deployment_id)
            if percentage is not None:
                snapshot.progress.percentage = percentage
        return OperationResult(
            success=True, deployment_id=deployment_id, message=execution.status.value, value=snapshot
        )

    def get_deployment_analytics(self, deployment_id: str) -> OperationResult[DeploymentMetrics]:
        execution = self.executions.get(deployment_id)
        if execution is None:
            return self._not_found(deployment_id)

        metrics = replace(
            self.strategies[execution.config.strategy].get_metrics(deployment_id),
            rollback_count=execution.rollback_count,
            success=execution.status is ExecutionStatus.COMPLETED,
        )
        if not metrics.duration:
            end_time = execution.end_time or utc_now()
            metrics.duration = (end_time - execution.start_time).total_seconds()
        return OperationResult(success=True, deployment_id=deployment_id, value=metrics)

    async def validate_deployment(self, deployment_id: str) -> OperationResult[ValidationResult]:
        """Run health and performance checks against a deployment."""
        if deployment_id not in self.executions:
            return self._not_found(deployment_id)

        validation = ValidationResult.combine(
            await self.validator.validate_health(deployment_id),
            await self.validator.validate_performance(deployment_id),
        )
        return OperationResult(
            success=validation.success,
            deployment_id=deployment_id,
            message="Deployment is healthy" if validation.success else validation.failure_summary(),
            error=None if validation.success else ErrorKind.EXECUTION,
            value=validation,
        )

    def list_deployments(self, filter: DeploymentFilter | None = None) -> builtins.list[DeploymentExecution]:
        filter = filter or DeploymentFilter()
        matches = sorted(
            (execution for execution in self.executions.values() if filter.matches(execution)),
            key=lambda execution: execution.start_time,
        )
        end = None if filter.limit is None else filter.offset + filter.limit
        return [execution.snapshot() for execution in matches[filter.offset : end]]

    def evict_deployment(self, deployment_id: str) -> OperationResult[None]:
        """Forget a finished deployment and its progress records."""
        execution = self.executions.get(deployment_id)
        if execution is None:
            return self._not_found(deployment_id)
        if execution.status in _ACTIVE:
            return OperationResult(
                success=False,
                deployment_id=deployment_id,
                message="Cannot evict a running deployment",
                error=ErrorKind.INVALID_STATE,
            )

        self.health_checks.stop_monitoring(deployment_id)
        self.state.evict(deployment_id)
        self.approvals.forget_deployment(deployment_id)
        del self.executions[deployment_id]
        return OperationResult(success=True, deployment_id=deployment_id, message="Deployment evicted")

    async def shutdown(self) -> None:
        """Cancel running deployments and stop health monitoring."""
        for deployment_id in list(self._tasks):
            self.state.control_for(deployment_id).cancel()
            self.approvals.cancel_deployment_requests(deployment_id)
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        await self.health_checks.shutdown()
