"""
Deployment strategies.

Blue-green, canary and rolling executors sharing the ``StrategyExecutor``
contract, plus the data model and state repository they operate on.
"""

from .analysis import CanaryAnalysisPolicy, decide, evaluate_canary_metrics
from .base import PausableStrategy, StrategyExecutor
from .blue_green import BlueGreenStrategy
from .canary import CanaryStrategy
from .enums import (
    ApprovalStatus,
    CanaryRecommendation,
    DeploymentEnvironment,
    EnvironmentColor,
    ExecutionStatus,
    StrategyType,
    TrafficSwitchType,
)
from .models import (
    ApprovalRequirement,
    BlueGreenStrategyConfig,
    CanaryAnalysisResult,
    CanaryStageConfig,
    CanaryStageInfo,
    CanaryStrategyConfig,
    CheckTarget,
    ComponentDeploymentConfig,
    DeploymentBatch,
    DeploymentConfig,
    DeploymentExecution,
    DeploymentFilter,
    DeploymentMetrics,
    DeploymentResult,
    InfrastructureConfig,
    LoadBalancerConfig,
    MetricsSnapshot,
    MetricThresholdConfig,
    NetworkingConfig,
    OperationResult,
    ProgressionRuleConfig,
    PromotionResult,
    RollbackInfo,
    RollbackPolicy,
    RollingProgress,
    RollingStrategyConfig,
    TrafficDistribution,
    TrafficSwitchConfig,
    TrafficSwitchStep,
    ValidationConfig,
    ValidationStepConfig,
)
from .rolling import RollingStrategy, calculate_batch_size, calculate_deployment_batches
from .state import DeploymentControl, DeploymentStateRepository
from .validation import ValidationResult, ValidationStepResult

__all__ = [
    "ApprovalRequirement",
    "ApprovalStatus",
    "BlueGreenStrategy",
    "BlueGreenStrategyConfig",
    "CanaryAnalysisPolicy",
    "CanaryAnalysisResult",
    "CanaryRecommendation",
    "CanaryStageConfig",
    "CanaryStageInfo",
    "CanaryStrategy",
    "CanaryStrategyConfig",
    "CheckTarget",
    "ComponentDeploymentConfig",
    "DeploymentBatch",
    "DeploymentConfig",
    "DeploymentControl",
    "DeploymentEnvironment",
    "DeploymentExecution",
    "DeploymentFilter",
    "DeploymentMetrics",
    "DeploymentResult",
    "DeploymentStateRepository",
    "EnvironmentColor",
    "ExecutionStatus",
    "InfrastructureConfig",
    "LoadBalancerConfig",
    "MetricThresholdConfig",
    "MetricsSnapshot",
    "NetworkingConfig",
    "OperationResult",
    "PausableStrategy",
    "ProgressionRuleConfig",
    "PromotionResult",
    "RollbackInfo",
    "RollbackPolicy",
    "RollingProgress",
    "RollingStrategy",
    "RollingStrategyConfig",
    "StrategyExecutor",
    "StrategyType",
    "TrafficDistribution",
    "TrafficSwitchConfig",
    "TrafficSwitchStep",
    "TrafficSwitchType",
    "ValidationConfig",
    "ValidationResult",
    "ValidationStepConfig",
    "ValidationStepResult",
    "calculate_batch_size",
    "calculate_deployment_batches",
    "decide",
    "evaluate_canary_metrics",
]
