"""
Canary deployment strategy.

Shifts traffic to the new version through ascending stages. Each stage soaks
for its duration while the canary is analyzed every ``analysis_interval``
seconds; a rollback recommendation aborts the whole deployment.
"""

import builtins
import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING

from ..config import OrchestratorSettings
from ..exceptions import (
    DeploymentCancelledError,
    DeploymentNotFoundError,
    DeploymentOrchestrationError,
    ErrorKind,
)
from .analysis import CanaryAnalysisPolicy
from .base import StrategyRun, failed_result, new_execution_id
from .enums import ApprovalStatus, CanaryRecommendation, ExecutionStatus, StrategyType
from .models import (
    CanaryAnalysisResult,
    CanaryStageConfig,
    CanaryStageInfo,
    CheckTarget,
    DeploymentConfig,
    DeploymentMetrics,
    DeploymentResult,
    OperationResult,
    RollbackInfo,
)
from .validation import ValidationResult, ValidationStepResult

if TYPE_CHECKING:
    from ..managers.approval import ApprovalManager
    from ..managers.infrastructure import InfrastructureAdapter
    from ..managers.metrics import MetricsCollector
    from .state import DeploymentControl, DeploymentStateRepository

logger = logging.getLogger(__name__)


class CanaryStrategy:
    """Canary deployment executor."""

    strategy_type = StrategyType.CANARY
    supports_pause = False

    def __init__(
        self,
        state: "DeploymentStateRepository",
        infrastructure: "InfrastructureAdapter",
        metrics_collector: "MetricsCollector",
        approvals: "ApprovalManager",
        settings: OrchestratorSettings | None = None,
    ):
        self.state = state
        self.infrastructure = infrastructure
        self.metrics_collector = metrics_collector
        self.approvals = approvals
        self.settings = settings or OrchestratorSettings()
        self._runs: builtins.dict[str, StrategyRun] = {}
        self._policies: builtins.dict[str, CanaryAnalysisPolicy] = {}

    async def execute(self, config: DeploymentConfig) -> DeploymentResult:
        """Execute canary deployment."""
        deployment_id = config.id
        execution_id = new_execution_id()
        canary = config.canary
        if canary is None or not canary.stages:
            return failed_result(
                deployment_id,
                execution_id,
                "Canary strategy configuration with at least one stage is required",
                ErrorKind.CONFIGURATION,
            )

        stages = canary.stages
        run = StrategyRun(config)
        self._runs[deployment_id] = run
        self.state.set_canary_stage(
            deployment_id,
            CanaryStageInfo(
                current_stage=0,
                total_stages=len(stages),
                percentage=0.0,
                duration=stages[0].duration,
                stage_name=stages[0].name,
            ),
        )
        control = self.state.control_for(deployment_id)
        logger.info(f"Starting canary deployment {deployment_id} with {len(stages)} stages")

        try:
            policy = CanaryAnalysisPolicy.from_rules(canary.progression_rules)
            self._policies[deployment_id] = policy

            for index, stage in enumerate(stages):
                control.check_cancelled()
                await self._deploy_stage(deployment_id, index, len(stages), stage)

                interval = canary.analysis_interval if canary.analysis_interval > 0 else stage.duration
                analysis = await self._soak(deployment_id, stage, interval, control)

                if analysis.recommendation is CanaryRecommendation.ROLLBACK:
                    run.finish(False)
                    return await self._abort(
                        config, execution_id, f"Canary rolled back at stage {stage.name}", analysis.reasons
                    )

                if analysis.recommendation is CanaryRecommendation.CONTINUE and not stage.auto_promote:
                    approved = await self._wait_for_approval(config, stage, control)
                    if not approved:
                        run.finish(False)
                        return await self._abort(
                            config,
                            execution_id,
                            f"Canary stage {stage.name} was not approved",
                            analysis.reasons,
                        )

                logger.info(
                    f"Canary stage {stage.name} ({stage.percentage:g}%) passed: "
                    f"{analysis.recommendation.value} (confidence {analysis.confidence:.2f})"
                )

            await self.infrastructure.set_canary_traffic(deployment_id, 100.0)
            self._update_stage(deployment_id, current_stage=len(stages), percentage=100.0)
            run.finish(True)
            logger.info(f"Canary deployment {deployment_id} promoted to 100%")
            return DeploymentResult(
                success=True,
                deployment_id=deployment_id,
                execution_id=execution_id,
                status=ExecutionStatus.COMPLETED,
                message=f"Canary deployment completed through {len(stages)} stages",
            )

        except DeploymentCancelledError as e:
            run.finish(False)
            logger.info(f"Canary deployment {deployment_id} cancelled")
            return failed_result(
                deployment_id, execution_id, e.message, e.error_kind, ExecutionStatus.CANCELLED
            )
        except DeploymentOrchestrationError as e:
            run.finish(False)
            logger.error(f"Canary deployment {deployment_id} failed: {e.message}")
            return failed_result(
                deployment_id, execution_id, f"Canary deployment failed: {e.message}", e.error_kind
            )
        except Exception as e:
            run.finish(False)
            logger.exception(f"Canary deployment {deployment_id} failed unexpectedly")
            return failed_result(
                deployment_id, execution_id, f"Canary deployment failed: {e}", ErrorKind.EXECUTION
            )

    async def _deploy_stage(
        self, deployment_id: str, index: int, total: int, stage: CanaryStageConfig
    ) -> None:
        logger.info(f"Deploying canary stage {stage.name}: {stage.percentage:g}% traffic")
        await self.infrastructure.set_canary_traffic(deployment_id, stage.percentage)
        previous = self.state.get_canary_stage(deployment_id)
        self.state.set_canary_stage(
            deployment_id,
            CanaryStageInfo(
                current_stage=index,
                total_stages=total,
                percentage=stage.percentage,
                duration=stage.duration,
                stage_name=stage.name,
                metrics=previous.metrics if previous else None,
            ),
        )

    async def _soak(
        self,
        deployment_id: str,
        stage: CanaryStageConfig,
        interval: float,
        control: "DeploymentControl",
    ) -> CanaryAnalysisResult:
        """Wait out the stage duration, analyzing every ``interval`` seconds."""
        if stage.duration <= 0:
            return await self.analyze_canary(deployment_id)

        deadline = time.monotonic() + stage.duration
        analysis = None
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await control.sleep(min(interval, remaining))
            analysis = await self.analyze_canary(deployment_id)
            if analysis.recommendation is CanaryRecommendation.ROLLBACK:
                break
        return analysis or await self.analyze_canary(deployment_id)

    async def _wait_for_approval(
        self, config: DeploymentConfig, stage: CanaryStageConfig, control: "DeploymentControl"
    ) -> bool:
        approvers = next((a.approvers for a in config.approvals if a.stage == stage.name), [])
        request = await self.approvals.request_approval(config.id, stage.name, approvers)
        status = await self.approvals.wait_for_decision(request.request_id, self.settings.approval_timeout)
        control.check_cancelled()
        return status is ApprovalStatus.APPROVED

    async def _abort(
        self,
        config: DeploymentConfig,
        execution_id: str,
        message: str,
        reasons: tuple[str, ...],
    ) -> DeploymentResult:
        """Reset canary traffic and report the analysis reasons."""
        reason = "; ".join(reasons)
        logger.warning(f"{message}: {reason}")
        try:
            await self._reset_traffic(config.id)
            rolled_back = True
        except Exception:
            logger.exception(f"Canary rollback failed for deployment {config.id}")
            rolled_back = False

        return failed_result(
            config.id,
            execution_id,
            f"{message}: {reason}" if rolled_back else f"{message}; traffic reset failed",
            ErrorKind.EXECUTION if rolled_back else ErrorKind.ROLLBACK,
            ExecutionStatus.ROLLED_BACK if rolled_back else ExecutionStatus.FAILED,
            rollback_info=RollbackInfo(
                triggered=True,
                reason=reason,
                previous_version=config.previous_version or "stable",
                success=rolled_back,
            ),
        )

    async def _reset_traffic(self, deployment_id: str) -> None:
        await self.infrastructure.set_canary_traffic(deployment_id, 0.0)
        self._update_stage(deployment_id, percentage=0.0)

    def _update_stage(self, deployment_id: str, **changes) -> None:
        info = self.state.get_canary_stage(deployment_id)
        if info is not None:
            self.state.set_canary_stage(deployment_id, replace(info, **changes))

    async def analyze_canary(self, deployment_id: str) -> CanaryAnalysisResult:
        """Collect metrics for the canary and recommend the next step."""
        info = self.state.get_canary_stage(deployment_id)
        if info is None:
            raise DeploymentNotFoundError("Canary deployment not found", deployment_id)

        snapshot = await self.metrics_collector.collect(
            CheckTarget(deployment_id=deployment_id, check="canary")
        )
        policy = self._policies.get(deployment_id) or CanaryAnalysisPolicy()
        result = policy.evaluate(snapshot)

        self.state.set_analysis(deployment_id, result)
        self.state.set_canary_stage(deployment_id, replace(info, metrics=snapshot))
        run = self._runs.get(deployment_id)
        if run is not None:
            run.snapshot = snapshot

        logger.debug(
            f"Canary analysis for {deployment_id}: {result.recommendation.value} "
            f"(confidence {result.confidence:.2f}): {', '.join(result.reasons)}"
        )
        return result

    def get_current_stage(self, deployment_id: str) -> CanaryStageInfo | None:
        return self.state.get_canary_stage(deployment_id)

    def progress_stage(self, deployment_id: str) -> OperationResult[CanaryStageInfo]:
        """Advance the recorded stage by one."""
        info = self.state.get_canary_stage(deployment_id)
        if info is None:
            return OperationResult(
                success=False,
                deployment_id=deployment_id,
                message="Canary deployment not found",
                error=ErrorKind.NOT_FOUND,
            )
        if info.current_stage >= info.total_stages:
            return OperationResult(
                success=False,
                deployment_id=deployment_id,
                message="Canary deployment already completed",
                error=ErrorKind.INVALID_STATE,
            )

        info = replace(info, current_stage=info.current_stage + 1)
        self.state.set_canary_stage(deployment_id, info)
        logger.info(f"Progressed to canary stage {info.current_stage}/{info.total_stages}")
        return OperationResult(success=True, deployment_id=deployment_id, value=info)

    def validate_config(self, config: DeploymentConfig) -> ValidationResult:
        """Validate canary strategy configuration."""
        canary = config.canary
        if canary is None:
            return ValidationResult.from_steps(
                [ValidationStepResult.failed("strategy-config", "Canary strategy configuration is required")],
                recommendations=["Provide a canary configuration"],
            )

        steps = [ValidationStepResult.passed("strategy-config", "Canary strategy configuration present")]
        recommendations = []
        percentages = [stage.percentage for stage in canary.stages]

        if percentages:
            steps.append(ValidationStepResult.passed("canary-stages", f"{len(percentages)} stages configured"))
        else:
            steps.append(ValidationStepResult.failed("canary-stages", "At least one canary stage is required"))
            recommendations.append("Define canary stages with increasing traffic percentages")

        if all(a < b for a, b in zip(percentages, percentages[1:])):
            steps.append(
                ValidationStepResult.passed("stage-progression", "Canary stage percentages are ascending")
            )
        else:
            steps.append(
                ValidationStepResult.failed(
                    "stage-progression", "Canary stage percentages must be in ascending order"
                )
            )
            recommendations.append("Order canary stages by strictly increasing percentage")

        if percentages and percentages[-1] == 100:
            steps.append(ValidationStepResult.passed("final-stage", "Final canary stage reaches 100%"))
        else:
            steps.append(ValidationStepResult.failed("final-stage", "Final canary stage must be 100%"))
            recommendations.append("Ensure final stage reaches 100% traffic")

        if canary.metrics:
            steps.append(
                ValidationStepResult.passed("canary-metrics", f"{len(canary.metrics)} metrics configured")
            )
        else:
            steps.append(ValidationStepResult.failed("canary-metrics", "At least one canary metric is required"))
            recommendations.append("Configure metrics such as error rate and response time")

        if not canary.progression_rules:
            steps.append(
                ValidationStepResult.failed("progression-rules", "At least one progression rule is required")
            )
            recommendations.append("Add progression rules such as 'error_rate < 0.05' -> promote")
        else:
            try:
                CanaryAnalysisPolicy.from_rules(canary.progression_rules)
            except DeploymentOrchestrationError as e:
                steps.append(ValidationStepResult.failed("progression-rules", e.message))
                recommendations.append("Use conditions of the form '<metric> <operator> <number>'")
            else:
                steps.append(
                    ValidationStepResult.passed(
                        "progression-rules", f"{len(canary.progression_rules)} progression rules configured"
                    )
                )

        if canary.analysis_interval > 0:
            steps.append(
                ValidationStepResult.passed(
                    "analysis-interval", f"Analysis interval is {canary.analysis_interval:g}s"
                )
            )
        else:
            steps.append(ValidationStepResult.failed("analysis-interval", "Analysis interval must be positive"))
            recommendations.append("Set a positive analysis interval")

        return ValidationResult.from_steps(steps, recommendations)

    def get_metrics(self, deployment_id: str) -> DeploymentMetrics:
        run = self._runs.get(deployment_id)
        return run.metrics() if run else DeploymentMetrics()

    async def rollback(
        self,
        deployment_id: str,
        target_version: str | None = None,
        reason: str = "Manual rollback requested",
    ) -> DeploymentResult:
        """Send all traffic back to the stable version."""
        execution_id = new_execution_id()
        if self.state.get_canary_stage(deployment_id) is None:
            return failed_result(
                deployment_id,
                execution_id,
                f"No canary deployment found for {deployment_id}",
                ErrorKind.ROLLBACK,
            )

        run = self._runs.get(deployment_id)
        previous_version = target_version or (run.config.previous_version if run else None) or "previous"
        logger.info(f"Canary rollback initiated for deployment {deployment_id}")
        try:
            await self._reset_traffic(deployment_id)
        except Exception as e:
            logger.exception(f"Canary rollback failed for deployment {deployment_id}")
            return failed_result(
                deployment_id,
                execution_id,
                f"Canary rollback failed: {e}",
                ErrorKind.ROLLBACK,
                rollback_info=RollbackInfo(
                    triggered=True, reason=reason, previous_version=previous_version, success=False
                ),
            )

        if run is not None:
            run.rollback_count += 1
        return DeploymentResult(
            success=True,
            deployment_id=deployment_id,
            execution_id=execution_id,
            status=ExecutionStatus.ROLLED_BACK,
            message="Canary deployment rolled back successfully",
            rollback_info=RollbackInfo(
                triggered=True, reason=reason, previous_version=previous_version, success=True
            ),
        )
