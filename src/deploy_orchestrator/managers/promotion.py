"""Environment promotion for completed deployments."""

import builtins
import logging
from collections import deque
from collections.abc import Awaitable, Callable

from ..config import OrchestratorSettings
from ..exceptions import ErrorKind
from ..strategies.enums import DeploymentEnvironment, ExecutionStatus
from ..strategies.models import (
    DeploymentConfig,
    DeploymentExecution,
    DeploymentResult,
    PromotionResult,
)
from ..strategies.validation import ValidationResult, ValidationStepResult

logger = logging.getLogger(__name__)

ENVIRONMENT_ORDER: tuple[DeploymentEnvironment, ...] = tuple(DeploymentEnvironment)

Deploy = Callable[[DeploymentConfig], Awaitable[DeploymentResult]]


def promoted_deployment_id(deployment_id: str, environment: DeploymentEnvironment) -> str:
    return f"{deployment_id}-{environment.value}"


class PromotionManager:
    """Re-runs a completed deployment's config against a later environment."""

    def __init__(self, settings: OrchestratorSettings | None = None):
        self.settings = settings or OrchestratorSettings()
        self.promotion_history: deque = deque(maxlen=self.settings.history_size)

    def validate_promotion(
        self,
        execution: DeploymentExecution,
        from_environment: DeploymentEnvironment,
        to_environment: DeploymentEnvironment,
    ) -> ValidationResult:
        steps = []

        if execution.status is ExecutionStatus.COMPLETED:
            steps.append(ValidationStepResult.passed("deployment-status", "Deployment completed"))
        else:
            steps.append(
                ValidationStepResult.failed(
                    "deployment-status",
                    f"Only completed deployments can be promoted, status is {execution.status.value}",
                )
            )

        if execution.config.environment is from_environment:
            steps.append(
                ValidationStepResult.passed("source-environment", f"Deployment runs in {from_environment.value}")
            )
        else:
            steps.append(
                ValidationStepResult.failed(
                    "source-environment",
                    f"Deployment runs in {execution.config.environment.value}, not {from_environment.value}",
                )
            )

        if ENVIRONMENT_ORDER.index(to_environment) > ENVIRONMENT_ORDER.index(from_environment):
            steps.append(
                ValidationStepResult.passed(
                    "promotion-order", f"{from_environment.value} -> {to_environment.value}"
                )
            )
        else:
            steps.append(
                ValidationStepResult.failed(
                    "promotion-order",
                    f"Cannot promote from {from_environment.value} to {to_environment.value}",
                )
            )

        return ValidationResult.from_steps(steps, recommendations=["Promote completed deployments forward only"])

    async def promote(
        self,
        execution: DeploymentExecution,
        from_environment: DeploymentEnvironment,
        to_environment: DeploymentEnvironment,
        deploy: Deploy,
    ) -> PromotionResult:
        """Validate the promotion, then deploy to ``to_environment``.

        Approval requirements for the target environment are enforced by
        ``deploy``.
        """
        source_id = execution.deployment_id

        def result(success: bool, message: str, **extra) -> PromotionResult:
            promotion = PromotionResult(
                success=success,
                source_deployment_id=source_id,
                deployment_id=extra.pop("deployment_id", None),
                from_environment=from_environment,
                to_environment=to_environment,
                message=message,
                **extra,
            )
            self.promotion_history.append(promotion)
            return promotion

        validation = self.validate_promotion(execution, from_environment, to_environment)
        if not validation.success:
            return result(
                False, f"Promotion rejected: {validation.failure_summary()}", error=ErrorKind.INVALID_STATE
            )

        target_id = promoted_deployment_id(source_id, to_environment)
        logger.info(f"Promoting deployment {source_id} from {from_environment.value} to {to_environment.value}")
        deployment_result = await deploy(execution.config.for_environment(to_environment, target_id))
        return result(
            deployment_result.success,
            f"Promotion to {to_environment.value} {'succeeded' if deployment_result.success else 'failed'}: "
            f"{deployment_result.message}",
            deployment_id=target_id,
            error=deployment_result.error,
            deployment_result=deployment_result,
        )

    def get_promotion_history(self, deployment_id: str | None = None) -> builtins.list[PromotionResult]:
        return [
            promotion
            for promotion in self.promotion_history
            if deployment_id is None or promotion.source_deployment_id == deployment_id
        ]
