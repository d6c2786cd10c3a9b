"""Collaborators used by the deployment strategies and orchestrator."""

from .approval import ApprovalManager, ApprovalRequest
from .health import HealthCheckManager, HealthCheckResult
from .infrastructure import InfrastructureAdapter, InMemoryInfrastructureAdapter
from .metrics import NOMINAL_SNAPSHOT, MetricsCollector, StaticMetricsCollector
from .notification import DeploymentNotification, NotificationManager
from .promotion import PromotionManager, promoted_deployment_id
from .rollback import RollbackManager, RollbackRecord
from .validation import DeploymentValidator

__all__ = [
    "ApprovalManager",
    "ApprovalRequest",
    "DeploymentNotification",
    "DeploymentValidator",
    "HealthCheckManager",
    "HealthCheckResult",
    "InMemoryInfrastructureAdapter",
    "InfrastructureAdapter",
    "MetricsCollector",
    "NOMINAL_SNAPSHOT",
    "NotificationManager",
    "PromotionManager",
    "RollbackManager",
    "RollbackRecord",
    "StaticMetricsCollector",
    "promoted_deployment_id",
]
