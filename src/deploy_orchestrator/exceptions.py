"""
Deployment Orchestration Exceptions

Exceptions raised inside strategies and managers. Public orchestrator and
strategy entry points convert them into result records carrying the
matching ``ErrorKind``.
"""

from enum import Enum


class ErrorKind(Enum):
    """Failure categories reported on result records."""

    CONFIGURATION = "configuration"
    EXECUTION = "execution"
    ROLLBACK = "rollback"
    NOT_FOUND = "not-found"
    UNSUPPORTED = "unsupported"
    INVALID_STATE = "invalid-state"
    CANCELLED = "cancelled"


class DeploymentOrchestrationError(Exception):
    """Base exception for deployment orchestration errors."""

    error_kind = ErrorKind.EXECUTION

    def __init__(self, message: str, deployment_id: str | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.deployment_id = deployment_id
        self.cause = cause


class ConfigurationError(DeploymentOrchestrationError):
    """Raised when a strategy is handed a configuration it cannot run."""

    error_kind = ErrorKind.CONFIGURATION


class ExecutionFailure(DeploymentOrchestrationError):
    """Raised when a batch, stage or switch fails validation."""


class DeadlineExceededError(ExecutionFailure):
    """Raised when a rolling deployment exceeds its progress deadline."""

    def __init__(self, message: str, deadline: float, elapsed: float, deployment_id: str | None = None):
        super().__init__(message, deployment_id)
        self.deadline = deadline
        self.elapsed = elapsed


class TrafficSwitchError(ExecutionFailure):
    """Raised when a gradual traffic switch step fails validation."""

    def __init__(self, message: str, percentage: float, deployment_id: str | None = None):
        super().__init__(message, deployment_id)
        self.percentage = percentage


class ApprovalRejectedError(ExecutionFailure):
    """Raised when a manual approval is rejected or times out."""


class RollbackFailure(DeploymentOrchestrationError):
    """Raised when a rollback itself fails."""

    error_kind = ErrorKind.ROLLBACK


class DeploymentNotFoundError(DeploymentOrchestrationError):
    """Raised when a deployment id is unknown."""

    error_kind = ErrorKind.NOT_FOUND


class UnsupportedOperationError(DeploymentOrchestrationError):
    """Raised when a strategy lacks a requested capability."""

    error_kind = ErrorKind.UNSUPPORTED


class InvalidDeploymentStateError(DeploymentOrchestrationError):
    """Raised when an operation does not apply to the current status."""

    error_kind = ErrorKind.INVALID_STATE


class DeploymentCancelledError(DeploymentOrchestrationError):
    """Raised at a suspension point once a deployment has been cancelled."""

    error_kind = ErrorKind.CANCELLED
