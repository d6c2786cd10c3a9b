"""Rollback management for deployment strategies."""

import builtins
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from ..strategies.enums import EnvironmentColor, ExecutionStatus, StrategyType
from ..strategies.models import DeploymentExecution, DeploymentResult, utc_now
from ..strategies.validation import ValidationResult, ValidationStepResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollbackRecord:
    """One entry of the rollback history."""

    rollback_id: str
    deployment_id: str
    strategy: StrategyType
    reason: str
    success: bool
    target_version: str | None = None
    message: str = ""
    recorded_at: datetime = field(default_factory=utc_now)


class RollbackManager:
    """Rollback validation and history for deployments."""

    def __init__(self, history_size: int = 1000):
        self.rollback_history: deque = deque(maxlen=history_size)

    def validate_rollback(
        self,
        execution: DeploymentExecution,
        target_version: str | None = None,
        rollback_color: EnvironmentColor | None = None,
    ) -> ValidationResult:
        """Check that a rollback may be started for ``execution``.

        Blue-green deployments also need ``rollback_color``, the color that
        served before their last committed traffic switch.
        """
        config = execution.config
        steps = []

        if config.rollback.enabled:
            steps.append(ValidationStepResult.passed("rollback-enabled", "Rollback is enabled"))
        else:
            steps.append(
                ValidationStepResult.failed("rollback-enabled", "Rollback is disabled for this deployment")
            )

        if execution.status is ExecutionStatus.PENDING:
            steps.append(
                ValidationStepResult.failed("deployment-state", "Deployment has not started yet")
            )
        elif execution.status in (ExecutionStatus.IN_PROGRESS, ExecutionStatus.PAUSED):
            steps.append(
                ValidationStepResult.failed(
                    "deployment-state",
                    f"Deployment is still {execution.status.value}; cancel it before rolling back",
                )
            )
        elif execution.status is ExecutionStatus.ROLLED_BACK:
            steps.append(
                ValidationStepResult.failed("deployment-state", "Deployment has already been rolled back")
            )
        else:
            steps.append(
                ValidationStepResult.passed(
                    "deployment-state", f"Deployment is {execution.status.value}"
                )
            )

        if config.strategy is StrategyType.BLUE_GREEN:
            if rollback_color is None:
                steps.append(
                    ValidationStepResult.failed("committed-switch", "No committed traffic switch to roll back")
                )
            else:
                steps.append(
                    ValidationStepResult.passed(
                        "committed-switch", f"Traffic returns to {rollback_color.value}"
                    )
                )

        if target_version is not None and target_version == config.version:
            steps.append(
                ValidationStepResult.failed(
                    "rollback-target", f"Target version {target_version} is the version being rolled back"
                )
            )
        else:
            steps.append(
                ValidationStepResult.passed(
                    "rollback-target",
                    f"Rolling back to {target_version or config.previous_version or 'previous version'}",
                )
            )

        return ValidationResult.from_steps(
            steps, recommendations=["Resolve the failed rollback checks before retrying"]
        )

    def record_rollback(
        self,
        execution: DeploymentExecution,
        result: DeploymentResult,
        reason: str,
        target_version: str | None = None,
    ) -> RollbackRecord:
        record = RollbackRecord(
            rollback_id=str(uuid.uuid4()),
            deployment_id=execution.deployment_id,
            strategy=execution.config.strategy,
            reason=reason,
            success=result.success,
            target_version=target_version,
            message=result.message,
        )
        self.rollback_history.append(record)
        log = logger.info if result.success else logger.error
        log(f"Rollback of deployment {execution.deployment_id} {'succeeded' if result.success else 'failed'}: {result.message}")
        return record

    def get_rollback_history(self, deployment_id: str | None = None) -> builtins.list[RollbackRecord]:
        return [
            record
            for record in self.rollback_history
            if deployment_id is None or record.deployment_id == deployment_id
        ]
