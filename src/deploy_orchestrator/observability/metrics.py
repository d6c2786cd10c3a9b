"""
Prometheus metrics for deployments.

Each recorder owns its ``CollectorRegistry`` unless one is passed in, so
several orchestrators (for example in tests) never collide on metric names.
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

DURATION_BUCKETS = [1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0]


class DeploymentMetricsRecorder:
    """Counters, histogram and gauge describing orchestrator activity."""

    def __init__(
        self,
        service_name: str = "deploy-orchestrator",
        registry: CollectorRegistry | None = None,
        enabled: bool = True,
    ):
        self.service_name = service_name
        self.enabled = enabled
        self.registry = registry or CollectorRegistry()

        self.deployments_total = Counter(
            "deployments_total",
            "Deployments finished, by strategy and final status",
            ["service", "strategy", "status"],
            registry=self.registry,
        )
        self.rollbacks_total = Counter(
            "deployment_rollbacks_total",
            "Rollbacks performed, by strategy and outcome",
            ["service", "strategy", "outcome"],
            registry=self.registry,
        )
        self.deployment_duration = Histogram(
            "deployment_duration_seconds",
            "Wall-clock duration of deployments",
            ["service", "strategy"],
            buckets=DURATION_BUCKETS,
            registry=self.registry,
        )
        self.active_deployments = Gauge(
            "active_deployments",
            "Deployments currently running",
            ["service"],
            registry=self.registry,
        )

    def deployment_started(self) -> None:
        if self.enabled:
            self.active_deployments.labels(service=self.service_name).inc()

    def deployment_finished(self, strategy: str, status: str, duration: float) -> None:
        if not self.enabled:
            return
        self.active_deployments.labels(service=self.service_name).dec()
        self.deployments_total.labels(service=self.service_name, strategy=strategy, status=status).inc()
        self.deployment_duration.labels(service=self.service_name, strategy=strategy).observe(duration)

    def rollback_recorded(self, strategy: str, success: bool) -> None:
        if self.enabled:
            self.rollbacks_total.labels(
                service=self.service_name, strategy=strategy, outcome="success" if success else "failure"
            ).inc()

    def sample(self, name: str, **labels: str) -> float | None:
        """Current value of a sample, mainly for inspection in tests."""
        return self.registry.get_sample_value(name, {"service": self.service_name, **labels})

    def export(self) -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)
