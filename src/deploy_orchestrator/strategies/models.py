"""Data models for deployment strategies."""

import builtins
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from ..exceptions import ErrorKind
from .enums import (
    CanaryRecommendation,
    DeploymentEnvironment,
    EnvironmentColor,
    ExecutionStatus,
    StrategyType,
    TrafficSwitchType,
)
from .validation import ValidationResult

T = TypeVar("T")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Tolerance used when checking that blue and green add up to 100.
TRAFFIC_EPSILON = 1e-6


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_snake_case(name: str) -> str:
    """Convert ``camelCase`` keys to ``snake_case``."""
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").lower()


def _normalize(data: builtins.dict[str, Any] | None) -> builtins.dict[str, Any]:
    return {to_snake_case(key): value for key, value in (data or {}).items()}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceRequirements:
    """Component resource requests and limits."""

    cpu: str = "100m"
    memory: str = "128Mi"
    limits: builtins.dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any] | None) -> "ResourceRequirements":
        data = _normalize(data)
        return cls(
            cpu=data.get("cpu", "100m"),
            memory=data.get("memory", "128Mi"),
            limits=dict(data.get("limits", {})),
        )


@dataclass(frozen=True)
class ComponentDeploymentConfig:
    """A deployable component and its replica count."""

    name: str
    replicas: int = 1
    resources: ResourceRequirements = field(default_factory=ResourceRequirements)
    version: str | None = None
    id: str | None = None
    dependencies: tuple[str, ...] = field(default_factory=tuple)
    environment: builtins.dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "ComponentDeploymentConfig":
        data = _normalize(data)
        return cls(
            name=data["name"],
            replicas=data.get("replicas", 1),
            resources=ResourceRequirements.from_dict(data.get("resources")),
            version=data.get("version"),
            id=data.get("id"),
            dependencies=tuple(data.get("dependencies", [])),
            environment=dict(data.get("environment", {})),
        )


@dataclass(frozen=True)
class LoadBalancerConfig:
    """Load balancer fronting the deployment."""

    type: str = "application"
    scheme: str = "internet-facing"
    listeners: tuple[builtins.dict[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "LoadBalancerConfig":
        data = _normalize(data)
        return cls(
            type=data.get("type", "application"),
            scheme=data.get("scheme", "internet-facing"),
            listeners=tuple(data.get("listeners", [])),
        )


@dataclass(frozen=True)
class NetworkingConfig:
    """Networking settings."""

    subnets: tuple[str, ...] = field(default_factory=tuple)
    load_balancer: LoadBalancerConfig | None = None

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any] | None) -> "NetworkingConfig":
        data = _normalize(data)
        load_balancer = data.get("load_balancer")
        return cls(
            subnets=tuple(data.get("subnets", [])),
            load_balancer=LoadBalancerConfig.from_dict(load_balancer) if load_balancer else None,
        )


@dataclass(frozen=True)
class InfrastructureConfig:
    """Infrastructure the deployment targets."""

    provider: str = "kubernetes"
    regions: tuple[str, ...] = field(default_factory=tuple)
    networking: NetworkingConfig = field(default_factory=NetworkingConfig)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any] | None) -> "InfrastructureConfig":
        data = _normalize(data)
        regions = data.get("regions", data.get("region", []))
        if isinstance(regions, str):
            regions = [regions]
        return cls(
            provider=data.get("provider", "kubernetes"),
            regions=tuple(regions),
            networking=NetworkingConfig.from_dict(data.get("networking")),
        )


@dataclass(frozen=True)
class RollingStrategyConfig:
    """Rolling update parameters. Durations are in seconds."""

    batch_size: int | str = 1
    max_unavailable: int | str = 1
    max_surge: int | str = 1
    progress_deadline: float = 600.0
    pause_between_batches: float = 0.0

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "RollingStrategyConfig":
        data = _normalize(data)
        return cls(
            batch_size=data.get("batch_size", 1),
            max_unavailable=data.get("max_unavailable", 1),
            max_surge=data.get("max_surge", 1),
            progress_deadline=data.get("progress_deadline", 600.0),
            pause_between_batches=data.get("pause_between_batches", 0.0),
        )


@dataclass(frozen=True)
class CanaryStageConfig:
    """A canary traffic checkpoint."""

    name: str
    percentage: float
    duration: float = 0.0
    auto_promote: bool = True

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "CanaryStageConfig":
        data = _normalize(data)
        return cls(
            name=data["name"],
            percentage=data["percentage"],
            duration=data.get("duration", 0.0),
            auto_promote=data.get("auto_promote", True),
        )


@dataclass(frozen=True)
class MetricThresholdConfig:
    """A metric the canary analysis reports on."""

    name: str
    threshold: float
    operator: str = "lt"
    unit: str | None = None

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "MetricThresholdConfig":
        data = _normalize(data)
        return cls(
            name=data["name"],
            threshold=data["threshold"],
            operator=data.get("operator", "lt"),
            unit=data.get("unit"),
        )


@dataclass(frozen=True)
class ProgressionRuleConfig:
    """A canary progression rule such as ``error_rate < 0.05 -> promote``."""

    name: str
    condition: str
    action: str
    weight: float | None = None

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "ProgressionRuleConfig":
        data = _normalize(data)
        return cls(
            name=data["name"],
            condition=data["condition"],
            action=data["action"],
            weight=data.get("weight"),
        )


@dataclass(frozen=True)
class CanaryStrategyConfig:
    """Canary rollout parameters. Durations are in seconds."""

    stages: tuple[CanaryStageConfig, ...] = field(default_factory=tuple)
    metrics: tuple[MetricThresholdConfig, ...] = field(default_factory=tuple)
    progression_rules: tuple[ProgressionRuleConfig, ...] = field(default_factory=tuple)
    analysis_interval: float = 60.0

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "CanaryStrategyConfig":
        data = _normalize(data)
        return cls(
            stages=tuple(CanaryStageConfig.from_dict(s) for s in data.get("stages", [])),
            metrics=tuple(MetricThresholdConfig.from_dict(m) for m in data.get("metrics", [])),
            progression_rules=tuple(
                ProgressionRuleConfig.from_dict(r) for r in data.get("progression_rules", [])
            ),
            analysis_interval=data.get("analysis_interval", 60.0),
        )


@dataclass(frozen=True)
class TrafficSwitchStep:
    """One step of a gradual blue-green switch."""

    percentage: float
    duration: float = 0.0
    validation: bool = False

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "TrafficSwitchStep":
        data = _normalize(data)
        return cls(
            percentage=data["percentage"],
            duration=data.get("duration", 0.0),
            validation=bool(data.get("validation", False)),
        )


@dataclass(frozen=True)
class TrafficSwitchConfig:
    """How traffic moves to the target color."""

    type: TrafficSwitchType = TrafficSwitchType.IMMEDIATE
    steps: tuple[TrafficSwitchStep, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "TrafficSwitchConfig":
        data = _normalize(data)
        return cls(
            type=TrafficSwitchType(data.get("type", TrafficSwitchType.IMMEDIATE.value)),
            steps=tuple(TrafficSwitchStep.from_dict(s) for s in data.get("steps", [])),
        )


@dataclass(frozen=True)
class BlueGreenStrategyConfig:
    """Blue-green parameters. Durations are in seconds."""

    switch_traffic: TrafficSwitchConfig | None = None
    warmup_duration: float = 0.0

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "BlueGreenStrategyConfig":
        data = _normalize(data)
        switch = data.get("switch_traffic")
        return cls(
            switch_traffic=TrafficSwitchConfig.from_dict(switch) if switch else None,
            warmup_duration=data.get("warmup_duration", 0.0),
        )


@dataclass(frozen=True)
class RollbackPolicy:
    """Rollback behaviour for a deployment."""

    enabled: bool = True
    automatic: bool = False
    timeout: float = 300.0

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any] | None) -> "RollbackPolicy":
        data = _normalize(data)
        return cls(
            enabled=data.get("enabled", True),
            automatic=data.get("automatic", False),
            timeout=data.get("timeout", 300.0),
        )


@dataclass(frozen=True)
class ApprovalRequirement:
    """Manual approval needed before a stage or environment."""

    stage: str
    approvers: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "ApprovalRequirement":
        data = _normalize(data)
        return cls(stage=data["stage"], approvers=tuple(data.get("approvers", [])))


@dataclass(frozen=True)
class ValidationStepConfig:
    """A pre- or post-deployment check."""

    name: str
    type: str = "health"
    required: bool = True
    configuration: builtins.dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "ValidationStepConfig":
        data = _normalize(data)
        return cls(
            name=data["name"],
            type=data.get("type", "health"),
            required=data.get("required", True),
            configuration=dict(data.get("configuration", {})),
        )


@dataclass(frozen=True)
class ValidationConfig:
    """Checks run around the strategy execution."""

    pre_deployment: tuple[ValidationStepConfig, ...] = field(default_factory=tuple)
    post_deployment: tuple[ValidationStepConfig, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any] | None) -> "ValidationConfig":
        data = _normalize(data)
        return cls(
            pre_deployment=tuple(
                ValidationStepConfig.from_dict(v) for v in data.get("pre_deployment", [])
            ),
            post_deployment=tuple(
                ValidationStepConfig.from_dict(v) for v in data.get("post_deployment", [])
            ),
        )


@dataclass(frozen=True)
class DeploymentConfig:
    """Main deployment configuration, immutable once submitted."""

    id: str
    name: str
    version: str
    strategy: StrategyType
    environment: DeploymentEnvironment
    components: tuple[ComponentDeploymentConfig, ...] = field(default_factory=tuple)
    infrastructure: InfrastructureConfig = field(default_factory=InfrastructureConfig)
    rolling: RollingStrategyConfig | None = None
    canary: CanaryStrategyConfig | None = None
    blue_green: BlueGreenStrategyConfig | None = None
    rollback: RollbackPolicy = field(default_factory=RollbackPolicy)
    approvals: tuple[ApprovalRequirement, ...] = field(default_factory=tuple)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    previous_version: str | None = None
    metadata: builtins.dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "DeploymentConfig":
        """Build a config from a plain mapping.

        Strategy sub-configs are read from ``rolling``/``canary``/``blue_green``
        or from the ``*_config`` entries of ``metadata``.
        """
        data = _normalize(data)
        metadata = dict(data.get("metadata", {}))
        nested = _normalize(metadata)

        def section(key: str) -> builtins.dict[str, Any] | None:
            return data.get(key) or data.get(f"{key}_config") or nested.get(f"{key}_config")

        rolling = section("rolling")
        canary = section("canary")
        blue_green = section("blue_green")

        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            version=data.get("version", "latest"),
            strategy=StrategyType.parse(data["strategy"]),
            environment=DeploymentEnvironment(data.get("environment", "development")),
            components=tuple(
                ComponentDeploymentConfig.from_dict(c) for c in data.get("components", [])
            ),
            infrastructure=InfrastructureConfig.from_dict(data.get("infrastructure")),
            rolling=RollingStrategyConfig.from_dict(rolling) if rolling else None,
            canary=CanaryStrategyConfig.from_dict(canary) if canary else None,
            blue_green=BlueGreenStrategyConfig.from_dict(blue_green) if blue_green else None,
            rollback=RollbackPolicy.from_dict(data.get("rollback")),
            approvals=tuple(ApprovalRequirement.from_dict(a) for a in data.get("approvals", [])),
            validation=ValidationConfig.from_dict(data.get("validation")),
            previous_version=data.get("previous_version"),
            metadata=metadata,
        )

    @property
    def total_replicas(self) -> int:
        return sum(component.replicas or 1 for component in self.components)

    @property
    def component_names(self) -> builtins.list[str]:
        return [component.name for component in self.components]

    def for_environment(self, environment: DeploymentEnvironment, deployment_id: str) -> "DeploymentConfig":
        """Copy of this config targeting another environment."""
        return replace(self, id=deployment_id, environment=environment)


# ---------------------------------------------------------------------------
# Progress records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeploymentBatch:
    """A contiguous range of one component's replicas."""

    component: str
    batch_number: int
    replicas: int
    total_replicas: int
    start_replica: int
    end_replica: int
    max_surge: int = 1
    max_unavailable: int = 1


@dataclass(frozen=True)
class RollingProgress:
    """Rolling update progress for one deployment."""

    total_replicas: int
    updated_replicas: int = 0
    ready_replicas: int = 0
    available_replicas: int = 0
    unavailable_replicas: int = 0
    percentage: float = 0.0
    start_time: datetime = field(default_factory=utc_now)
    completed_batches: int = 0
    total_batches: int = 0


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time metrics for a deployment target.

    ``error_rate`` is a fraction, ``availability``/``cpu``/``memory``/``storage``
    are percentages and ``response_time`` is in milliseconds.
    """

    response_time: float = 0.0
    error_rate: float = 0.0
    throughput: float = 0.0
    availability: float = 100.0
    cpu: float = 0.0
    memory: float = 0.0
    network: float = 0.0
    storage: float = 0.0
    collected_at: datetime = field(default_factory=utc_now, compare=False)

    FIELDS = (
        "response_time",
        "error_rate",
        "throughput",
        "availability",
        "cpu",
        "memory",
        "network",
        "storage",
    )

    @classmethod
    def from_mapping(cls, data: builtins.dict[str, Any]) -> "MetricsSnapshot":
        data = _normalize(data)
        return cls(**{name: float(data[name]) for name in cls.FIELDS if name in data})

    def value(self, metric: str) -> float:
        """Return a metric by name (``errorRate`` and ``error_rate`` both work)."""
        name = to_snake_case(metric)
        if name not in self.FIELDS:
            raise KeyError(f"Unknown metric: {metric}")
        return getattr(self, name)

    def as_dict(self) -> builtins.dict[str, float]:
        return {name: getattr(self, name) for name in self.FIELDS}


@dataclass(frozen=True)
class CheckTarget:
    """What a health probe or metrics collection is aimed at."""

    deployment_id: str
    check: str = "health"
    component: str | None = None
    color: EnvironmentColor | None = None
    batch: DeploymentBatch | None = None
    options: builtins.dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class CanaryStageInfo:
    """Current canary stage for one deployment."""

    current_stage: int
    total_stages: int
    percentage: float = 0.0
    duration: float = 0.0
    start_time: datetime = field(default_factory=utc_now)
    metrics: MetricsSnapshot | None = None
    stage_name: str | None = None


@dataclass(frozen=True)
class TrafficDistribution:
    """Blue/green traffic split; blue + green is always 100."""

    blue: float
    green: float
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if abs(self.blue + self.green - 100.0) > TRAFFIC_EPSILON:
            raise ValueError(
                f"Traffic distribution must add up to 100, got blue={self.blue} green={self.green}"
            )
        if not (0.0 <= self.blue <= 100.0 and 0.0 <= self.green <= 100.0):
            raise ValueError("Traffic percentages must be between 0 and 100")

    @classmethod
    def towards(cls, color: EnvironmentColor, percentage: float) -> "TrafficDistribution":
        """Send ``percentage`` of traffic to ``color`` and the rest to the other."""
        percentage = min(100.0, max(0.0, float(percentage)))
        if color is EnvironmentColor.BLUE:
            return cls(blue=percentage, green=100.0 - percentage)
        return cls(blue=100.0 - percentage, green=percentage)

    @classmethod
    def all_on(cls, color: EnvironmentColor) -> "TrafficDistribution":
        return cls.towards(color, 100.0)

    def percentage_for(self, color: EnvironmentColor) -> float:
        return self.blue if color is EnvironmentColor.BLUE else self.green


@dataclass(frozen=True)
class CanaryAnalysisResult:
    """Outcome of one canary analysis."""

    recommendation: CanaryRecommendation
    confidence: float
    metrics: MetricsSnapshot
    reasons: tuple[str, ...] = ()
    analyzed_at: datetime = field(default_factory=utc_now, compare=False)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RollbackInfo:
    """Details of a rollback attached to a deployment result."""

    triggered: bool
    reason: str
    previous_version: str
    rollback_time: datetime = field(default_factory=utc_now)
    success: bool = True


@dataclass
class ResourceUsage:
    """Resource usage figures."""

    cpu: float = 0.0
    memory: float = 0.0
    network: float = 0.0
    storage: float = 0.0


@dataclass
class PerformanceMetrics:
    """Performance figures."""

    response_time: float = 0.0
    throughput: float = 0.0
    error_rate: float = 0.0
    availability: float = 0.0


@dataclass
class DeploymentMetrics:
    """Analytics for one deployment. ``duration`` is in seconds."""

    duration: float = 0.0
    resource_usage: ResourceUsage = field(default_factory=ResourceUsage)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    success: bool = False
    rollback_count: int = 0


@dataclass(frozen=True)
class DeploymentResult:
    """Outcome of execute or rollback. Callers branch on ``success``."""

    success: bool
    deployment_id: str
    execution_id: str
    status: ExecutionStatus
    message: str
    rollback_info: RollbackInfo | None = None
    error: ErrorKind | None = None
    validation: ValidationResult | None = None
    metrics: DeploymentMetrics | None = None


@dataclass
class DeploymentProgress:
    """Coarse progress of an execution."""

    total_steps: int
    completed_steps: int = 0
    current_step: str = "Initializing deployment"
    percentage: float = 0.0
    estimated_time_remaining: float = 0.0


@dataclass(frozen=True)
class DeploymentLog:
    """Event recorded on an execution."""

    level: str
    component: str
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    metadata: builtins.dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeploymentErrorRecord:
    """Error recorded on an execution."""

    component: str
    kind: ErrorKind
    message: str
    recoverable: bool = False
    timestamp: datetime = field(default_factory=utc_now)


@dataclass
class DeploymentExecution:
    """Orchestrator-owned record of one deployment run."""

    id: str
    deployment_id: str
    config: DeploymentConfig
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_stage: str = "initialization"
    progress: DeploymentProgress = field(default_factory=lambda: DeploymentProgress(total_steps=0))
    start_time: datetime = field(default_factory=utc_now)
    end_time: datetime | None = None
    logs: builtins.list[DeploymentLog] = field(default_factory=list)
    errors: builtins.list[DeploymentErrorRecord] = field(default_factory=list)
    result: DeploymentResult | None = None
    rollback_count: int = 0

    def snapshot(self) -> "DeploymentExecution":
        """Copy safe to hand out to callers."""
        return replace(
            self,
            progress=replace(self.progress),
            logs=list(self.logs),
            errors=list(self.errors),
        )


@dataclass(frozen=True)
class DeploymentFilter:
    """Filter for listing deployments."""

    environment: DeploymentEnvironment | None = None
    status: ExecutionStatus | None = None
    component: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    offset: int = 0
    limit: int | None = None

    def matches(self, execution: DeploymentExecution) -> bool:
        if self.environment and execution.config.environment is not self.environment:
            return False
        if self.status and execution.status is not self.status:
            return False
        if self.component and self.component not in execution.config.component_names:
            return False
        if self.start_date and execution.start_time < self.start_date:
            return False
        if self.end_date and execution.start_time > self.end_date:
            return False
        return True


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Result of a lookup or control operation."""

    success: bool
    deployment_id: str
    message: str = ""
    error: ErrorKind | None = None
    value: T | None = None

    @property
    def not_found(self) -> bool:
        return self.error is ErrorKind.NOT_FOUND


@dataclass(frozen=True)
class PromotionResult:
    """Outcome of promoting a deployment to another environment."""

    success: bool
    source_deployment_id: str
    deployment_id: str | None
    from_environment: DeploymentEnvironment
    to_environment: DeploymentEnvironment
    message: str
    error: ErrorKind | None = None
    deployment_result: DeploymentResult | None = None
    promoted_at: datetime = field(default_factory=utc_now)
