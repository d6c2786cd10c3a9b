"""
Deployment Strategy Enums

Core enumeration types for strategy selection, execution status, canary
decisions, blue-green colors and manual approvals.
"""

from enum import Enum


class StrategyType(Enum):
    """Deployment strategy types."""

    BLUE_GREEN = "blue-green"
    CANARY = "canary"
    ROLLING = "rolling"

    @classmethod
    def parse(cls, value: "str | StrategyType") -> "StrategyType":
        """Accept enum members, values and underscore spellings."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        return cls(normalized)


class DeploymentEnvironment(Enum):
    """Target environments, in promotion order."""

    DEVELOPMENT = "development"
    TEST = "test"
    PREVIEW = "preview"
    STAGING = "staging"
    PRODUCTION = "production"


class ExecutionStatus(Enum):
    """Deployment execution status."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled-back"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
            ExecutionStatus.ROLLED_BACK,
        )


class CanaryRecommendation(Enum):
    """Canary analysis outcome."""

    PROMOTE = "promote"
    ROLLBACK = "rollback"
    CONTINUE = "continue"


class TrafficSwitchType(Enum):
    """Blue-green traffic switch modes."""

    IMMEDIATE = "immediate"
    GRADUAL = "gradual"


class EnvironmentColor(Enum):
    """Blue-green environment colors."""

    BLUE = "blue"
    GREEN = "green"

    @property
    def opposite(self) -> "EnvironmentColor":
        return EnvironmentColor.GREEN if self is EnvironmentColor.BLUE else EnvironmentColor.BLUE


class ApprovalStatus(Enum):
    """Manual approval states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

