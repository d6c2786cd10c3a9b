"""
Deploy Orchestrator

Progressive delivery engine: blue-green, canary and rolling deployment
strategies behind a common executor contract, driven by
:class:`DeploymentOrchestrator`.
"""

from .config import OrchestratorSettings
from .exceptions import (
    ApprovalRejectedError,
    ConfigurationError,
    DeadlineExceededError,
    DeploymentCancelledError,
    DeploymentNotFoundError,
    DeploymentOrchestrationError,
    ErrorKind,
    ExecutionFailure,
    InvalidDeploymentStateError,
    RollbackFailure,
    TrafficSwitchError,
    UnsupportedOperationError,
)
from .managers import (
    ApprovalManager,
    DeploymentValidator,
    HealthCheckManager,
    HealthCheckResult,
    InfrastructureAdapter,
    InMemoryInfrastructureAdapter,
    MetricsCollector,
    NotificationManager,
    PromotionManager,
    RollbackManager,
    StaticMetricsCollector,
)
from .orchestrator import DeploymentOrchestrator
from .strategies import (
    BlueGreenStrategy,
    CanaryStrategy,
    DeploymentConfig,
    DeploymentEnvironment,
    DeploymentExecution,
    DeploymentFilter,
    DeploymentResult,
    ExecutionStatus,
    MetricsSnapshot,
    OperationResult,
    PromotionResult,
    RollingStrategy,
    StrategyExecutor,
    StrategyType,
    ValidationResult,
)

__version__ = "0.1.0"

__all__ = [
    "ApprovalManager",
    "ApprovalRejectedError",
    "BlueGreenStrategy",
    "CanaryStrategy",
    "ConfigurationError",
    "DeadlineExceededError",
    "DeploymentCancelledError",
    "DeploymentConfig",
    "DeploymentEnvironment",
    "DeploymentExecution",
    "DeploymentFilter",
    "DeploymentNotFoundError",
    "DeploymentOrchestrationError",
    "DeploymentOrchestrator",
    "DeploymentResult",
    "DeploymentValidator",
    "ErrorKind",
    "ExecutionFailure",
    "ExecutionStatus",
    "HealthCheckManager",
    "HealthCheckResult",
    "InMemoryInfrastructureAdapter",
    "InfrastructureAdapter",
    "InvalidDeploymentStateError",
    "MetricsCollector",
    "MetricsSnapshot",
    "NotificationManager",
    "OperationResult",
    "OrchestratorSettings",
    "PromotionManager",
    "PromotionResult",
    "RollbackFailure",
    "RollbackManager",
    "RollingStrategy",
    "StaticMetricsCollector",
    "StrategyExecutor",
    "StrategyType",
    "TrafficSwitchError",
    "UnsupportedOperationError",
    "ValidationResult",
]
