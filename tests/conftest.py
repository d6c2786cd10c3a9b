"""
Global pytest configuration and fixtures for deploy orchestrator testing.

Fixtures build collaborators with short poll intervals so that pause, cancel
and approval paths finish in milliseconds, and factories that turn plain
mappings into deployment configs the same way callers do.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from deploy_orchestrator import (
    ApprovalManager,
    DeploymentConfig,
    DeploymentOrchestrator,
    HealthCheckManager,
    InMemoryInfrastructureAdapter,
    OrchestratorSettings,
    StaticMetricsCollector,
)
from deploy_orchestrator.strategies import (
    BlueGreenStrategy,
    CanaryStrategy,
    DeploymentStateRepository,
    RollingStrategy,
)

ConfigFactory = Callable[..., DeploymentConfig]


def _build(base: dict[str, Any], overrides: dict[str, Any]) -> DeploymentConfig:
    data = {**base, **overrides}
    return DeploymentConfig.from_dict(data)


class GatedInfrastructureAdapter(InMemoryInfrastructureAdapter):
    """In-memory adapter whose batch deployments block until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.batch_started = asyncio.Event()

    async def deploy_batch(self, deployment_id, batch, version):
        self.batch_started.set()
        await self.gate.wait()
        await super().deploy_batch(deployment_id, batch, version)


@pytest.fixture
def settings() -> OrchestratorSettings:
    """Provide settings with short poll intervals."""
    return OrchestratorSettings(
        service_name="deploy-orchestrator-test",
        pause_poll_interval=0.01,
        approval_timeout=2.0,
        approval_poll_interval=0.01,
        ready_timeout=1.0,
        health_check_interval=0.05,
    )


@pytest.fixture
def state() -> DeploymentStateRepository:
    """Provide an empty state repository."""
    return DeploymentStateRepository(history_size=100)


@pytest.fixture
def infrastructure() -> InMemoryInfrastructureAdapter:
    """Provide an infrastructure adapter that records its calls."""
    return InMemoryInfrastructureAdapter()


@pytest.fixture
def metrics_collector() -> StaticMetricsCollector:
    """Provide a collector reporting nominal metrics."""
    return StaticMetricsCollector()


@pytest.fixture
def health_checks() -> HealthCheckManager:
    """Provide a health check manager without probes."""
    return HealthCheckManager(monitoring_interval=0.05)


@pytest.fixture
def approvals(settings) -> ApprovalManager:
    """Provide an approval manager polling every few milliseconds."""
    return ApprovalManager(poll_interval=settings.approval_poll_interval)


@pytest.fixture
def rolling_strategy(state, infrastructure, health_checks, metrics_collector, settings) -> RollingStrategy:
    return RollingStrategy(state, infrastructure, health_checks, metrics_collector, settings)


@pytest.fixture
def canary_strategy(state, infrastructure, metrics_collector, approvals, settings) -> CanaryStrategy:
    return CanaryStrategy(state, infrastructure, metrics_collector, approvals, settings)


@pytest.fixture
def blue_green_strategy(state, infrastructure, health_checks, metrics_collector, settings) -> BlueGreenStrategy:
    return BlueGreenStrategy(state, infrastructure, health_checks, metrics_collector, settings)


@pytest.fixture
def gated_infrastructure() -> GatedInfrastructureAdapter:
    """Provide an adapter that holds every batch until its gate is set."""
    return GatedInfrastructureAdapter()


@pytest_asyncio.fixture
async def orchestrator_factory(settings, metrics_collector, health_checks):
    """Build orchestrators sharing the test collaborators; shut down after the test."""
    created = []

    def factory(infrastructure=None, **overrides) -> DeploymentOrchestrator:
        orchestrator = DeploymentOrchestrator(
            settings=overrides.pop("settings", settings),
            infrastructure=infrastructure or InMemoryInfrastructureAdapter(),
            metrics_collector=metrics_collector,
            health_checks=health_checks,
            metrics_registry=CollectorRegistry(),
            **overrides,
        )
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        await orchestrator.shutdown()


@pytest.fixture
def orchestrator(orchestrator_factory, infrastructure) -> DeploymentOrchestrator:
    """Provide an orchestrator with its own metrics registry."""
    return orchestrator_factory(infrastructure)


@pytest.fixture
def rolling_config() -> ConfigFactory:
    """Factory for rolling deployment configs."""

    def factory(**overrides: Any) -> DeploymentConfig:
        return _build(
            {
                "id": "payments-rolling",
                "name": "payments",
                "version": "2.0.0",
                "previousVersion": "1.9.0",
                "strategy": "rolling",
                "environment": "staging",
                "components": [{"name": "api", "replicas": 4}],
                "infrastructure": {"provider": "kubernetes", "regions": ["eu-west-1"]},
                "rolling": {"batchSize": 1, "maxUnavailable": 1, "maxSurge": 1, "progressDeadline": 60},
            },
            overrides,
        )

    return factory


@pytest.fixture
def canary_config() -> ConfigFactory:
    """Factory for canary deployment configs."""

    def factory(**overrides: Any) -> DeploymentConfig:
        return _build(
            {
                "id": "checkout-canary",
                "name": "checkout",
                "version": "3.1.0",
                "previousVersion": "3.0.2",
                "strategy": "canary",
                "environment": "production",
                "components": [{"name": "checkout", "replicas": 3}],
                "canary": {
                    "stages": [
                        {"name": "ten", "percentage": 10},
                        {"name": "half", "percentage": 50},
                        {"name": "full", "percentage": 100},
                    ],
                    "metrics": [{"name": "error_rate", "threshold": 0.05, "operator": "lt"}],
                    "progressionRules": [
                        {"name": "error-gate", "condition": "error_rate < 0.05", "action": "promote"}
                    ],
                    "analysisInterval": 0.01,
                },
            },
            overrides,
        )

    return factory


@pytest.fixture
def blue_green_config() -> ConfigFactory:
    """Factory for blue-green deployment configs."""

    def factory(**overrides: Any) -> DeploymentConfig:
        return _build(
            {
                "id": "catalog-bg",
                "name": "catalog",
                "version": "5.0.0",
                "previousVersion": "4.2.0",
                "strategy": "blue-green",
                "environment": "staging",
                "components": [{"name": "catalog", "replicas": 4}],
                "infrastructure": {
                    "provider": "aws",
                    "networking": {"loadBalancer": {"type": "application"}},
                },
                "blueGreen": {"switchTraffic": {"type": "immediate"}},
            },
            overrides,
        )

    return factory
