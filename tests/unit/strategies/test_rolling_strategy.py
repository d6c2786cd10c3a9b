"""
Tests for the rolling deployment strategy.

Covers batch planning, configuration validation, batch execution, the
progress deadline and rollback.
"""

import asyncio

import pytest

from deploy_orchestrator import ConfigurationError, ErrorKind, ExecutionStatus
from deploy_orchestrator.managers import HealthCheckResult
from deploy_orchestrator.strategies import (
    ComponentDeploymentConfig,
    MetricsSnapshot,
    calculate_batch_size,
    calculate_deployment_batches,
)
from deploy_orchestrator.strategies.rolling import parse_quantity


class TestBatchPlanning:
    """Test splitting components into replica batches."""

    def test_percentage_batches_cover_every_replica(self):
        """25% of 10 replicas is 3 per batch with a short final batch."""
        batches = calculate_deployment_batches([ComponentDeploymentConfig(name="api", replicas=10)], "25%")

        assert [b.replicas for b in batches] == [3, 3, 3, 1]
        assert [b.batch_number for b in batches] == [1, 2, 3, 4]
        assert batches[0].start_replica == 0
        assert batches[-1].end_replica == 9
        for previous, current in zip(batches, batches[1:]):
            assert current.start_replica == previous.end_replica + 1

    def test_absolute_batch_size_larger_than_component(self):
        batches = calculate_deployment_batches([ComponentDeploymentConfig(name="api", replicas=3)], 10)

        assert len(batches) == 1
        assert batches[0].replicas == 3
        assert (batches[0].start_replica, batches[0].end_replica) == (0, 2)

    def test_components_are_not_interleaved(self):
        components = [
            ComponentDeploymentConfig(name="api", replicas=4),
            ComponentDeploymentConfig(name="worker", replicas=2),
        ]

        batches = calculate_deployment_batches(components, 2)

        assert [(b.component, b.batch_number) for b in batches] == [
            ("api", 1),
            ("api", 2),
            ("worker", 1),
        ]
        assert sum(b.replicas for b in batches) == 6

    def test_surge_and_unavailable_percentages(self):
        batches = calculate_deployment_batches(
            [ComponentDeploymentConfig(name="api", replicas=10)], 5, max_surge="25%", max_unavailable="25%"
        )

        assert batches[0].max_surge == 3
        assert batches[0].max_unavailable == 2

    @pytest.mark.parametrize(
        "total,batch_size,expected",
        [(10, "25%", 3), (10, "100%", 10), (3, 10, 3), (4, "1%", 1), (5, "2", 2)],
    )
    def test_calculate_batch_size(self, total, batch_size, expected):
        assert calculate_batch_size(total, batch_size) == expected

    @pytest.mark.parametrize("value", [0, -1, "0%", "abc", "", True, None, 2.5])
    def test_invalid_quantities(self, value):
        assert parse_quantity(value) is None
        with pytest.raises(ConfigurationError):
            calculate_batch_size(4, value)


class TestRollingValidation:
    """Test rolling configuration validation."""

    def test_valid_configuration(self, rolling_strategy, rolling_config):
        result = rolling_strategy.validate_config(rolling_config())

        assert result.success
        assert result.overall_score == 1.0
        assert result.recommendations == ()

    def test_missing_rolling_section(self, rolling_strategy, rolling_config):
        result = rolling_strategy.validate_config(rolling_config(rolling=None))

        assert not result.success
        assert result.get("strategy-config").message == "Rolling strategy configuration is required"

    def test_invalid_values_are_itemized(self, rolling_strategy, rolling_config):
        config = rolling_config(
            rolling={"batchSize": "0%", "maxSurge": "lots", "progressDeadline": 0},
            components=[{"name": "api", "replicas": 1}],
        )

        result = rolling_strategy.validate_config(config)

        assert not result.success
        failed = {step.name for step in result.failed_steps}
        assert failed == {"batch-size", "max-surge", "progress-deadline", "component-replicas"}
        assert result.overall_score == pytest.approx(3 / 7)
        assert result.recommendations

    def test_validation_is_repeatable(self, rolling_strategy, rolling_config):
        config = rolling_config(rolling={"batchSize": "abc"})

        assert rolling_strategy.validate_config(config) == rolling_strategy.validate_config(config)


class TestRollingExecution:
    """Test rolling deployment execution."""

    @pytest.mark.asyncio
    async def test_execute_updates_every_replica(self, rolling_strategy, rolling_config, infrastructure):
        config = rolling_config(rolling={"batchSize": "50%"})

        result = await rolling_strategy.execute(config)

        assert result.success
        assert result.status is ExecutionStatus.COMPLETED
        assert result.message == "Rolling deployment completed: 4 replicas updated in 2 batches"
        assert [b.replicas for b in infrastructure.deployed_batches[config.id]] == [2, 2]
        assert infrastructure.versions[config.id] == "2.0.0"

        progress = rolling_strategy.get_rolling_progress(config.id)
        assert progress.updated_replicas == 4
        assert progress.percentage == 100.0
        assert progress.completed_batches == progress.total_batches == 2
        assert progress.unavailable_replicas == 0

    @pytest.mark.asyncio
    async def test_component_version_overrides_deployment_version(
        self, rolling_strategy, rolling_config, infrastructure
    ):
        config = rolling_config(components=[{"name": "api", "replicas": 2, "version": "2.0.1"}])

        await rolling_strategy.execute(config)

        assert {call["version"] for call in infrastructure.calls_for("deploy_batch")} == {"2.0.1"}

    @pytest.mark.asyncio
    async def test_missing_configuration_fails(self, rolling_strategy, rolling_config):
        result = await rolling_strategy.execute(rolling_config(rolling=None))

        assert not result.success
        assert result.error is ErrorKind.CONFIGURATION
        assert result.message == "Rolling strategy configuration is required"

    @pytest.mark.asyncio
    async def test_batch_that_never_becomes_ready(self, rolling_strategy, rolling_config, infrastructure):
        infrastructure.ready = False

        result = await rolling_strategy.execute(rolling_config())

        assert not result.success
        assert result.status is ExecutionStatus.FAILED
        assert result.error is ErrorKind.EXECUTION
        assert "did not become ready" in result.message
        assert result.message.startswith("Rolling deployment failed:")

    @pytest.mark.asyncio
    async def test_unhealthy_batch_stops_the_rollout(
        self, rolling_strategy, rolling_config, infrastructure, health_checks
    ):
        health_checks.register_check("health", lambda target: HealthCheckResult(False, "pods crash looping"))
        config = rolling_config()

        result = await rolling_strategy.execute(config)

        assert not result.success
        assert "pods crash looping" in result.message
        assert len(infrastructure.deployed_batches[config.id]) == 1
        assert rolling_strategy.get_rolling_progress(config.id).updated_replicas == 0

    @pytest.mark.asyncio
    async def test_slow_batch_fails_performance_check(
        self, rolling_strategy, rolling_config, metrics_collector
    ):
        config = rolling_config()
        metrics_collector.set_snapshot(MetricsSnapshot(response_time=2500.0), config.id)

        result = await rolling_strategy.execute(config)

        assert not result.success
        assert "Performance check failed" in result.message

    @pytest.mark.asyncio
    async def test_progress_deadline_exceeded(self, rolling_strategy, rolling_config):
        config = rolling_config(
            rolling={"batchSize": 1, "progressDeadline": 0.01, "pauseBetweenBatches": 0.05}
        )

        result = await rolling_strategy.execute(config)

        assert not result.success
        assert result.status is ExecutionStatus.FAILED
        assert result.error is ErrorKind.EXECUTION
        assert "exceeded progress deadline of 0.01s" in result.message

        progress = rolling_strategy.get_rolling_progress(config.id)
        assert progress is not None
        assert progress.updated_replicas == 1
        assert progress.completed_batches == 1

    @pytest.mark.asyncio
    async def test_progress_deadline_applies_to_the_last_batch(
        self, rolling_strategy, rolling_config, infrastructure, monkeypatch
    ):
        deploy_batch = infrastructure.deploy_batch

        async def slow_deploy_batch(deployment_id, batch, version):
            await asyncio.sleep(0.1)
            await deploy_batch(deployment_id, batch, version)

        monkeypatch.setattr(infrastructure, "deploy_batch", slow_deploy_batch)
        config = rolling_config(
            components=[{"name": "api", "replicas": 2}],
            rolling={"batchSize": 2, "progressDeadline": 0.05},
        )

        result = await rolling_strategy.execute(config)

        assert not result.success
        assert result.status is ExecutionStatus.FAILED
        assert "exceeded progress deadline of 0.05s" in result.message
        assert rolling_strategy.get_rolling_progress(config.id).completed_batches == 1

    @pytest.mark.asyncio
    async def test_metrics_reflect_the_last_run(self, rolling_strategy, rolling_config):
        config = rolling_config()

        await rolling_strategy.execute(config)
        metrics = rolling_strategy.get_metrics(config.id)

        assert metrics.success
        assert metrics.duration > 0
        assert metrics.performance.error_rate == pytest.approx(0.001)
        assert rolling_strategy.get_metrics("unknown").duration == 0.0


class TestRollingRollback:
    """Test rolling rollback."""

    @pytest.mark.asyncio
    async def test_rollback_restores_previous_version(self, rolling_strategy, rolling_config, infrastructure):
        config = rolling_config()
        await rolling_strategy.execute(config)

        result = await rolling_strategy.rollback(config.id, reason="error budget burned")

        assert result.success
        assert result.status is ExecutionStatus.ROLLED_BACK
        assert result.message == "Rolling deployment rolled back successfully"
        assert result.rollback_info.previous_version == "1.9.0"
        assert result.rollback_info.reason == "error budget burned"
        assert infrastructure.versions[config.id] == "1.9.0"

        progress = rolling_strategy.get_rolling_progress(config.id)
        assert progress.updated_replicas == 0
        assert progress.percentage == 0.0
        assert progress.available_replicas == progress.total_replicas == 4
        assert rolling_strategy.get_metrics(config.id).rollback_count == 1

    @pytest.mark.asyncio
    async def test_rollback_to_explicit_version(self, rolling_strategy, rolling_config, infrastructure):
        config = rolling_config()
        await rolling_strategy.execute(config)

        result = await rolling_strategy.rollback(config.id, target_version="1.8.3")

        assert result.rollback_info.previous_version == "1.8.3"
        assert infrastructure.calls_for("restore_previous_version")[-1]["version"] == "1.8.3"

    @pytest.mark.asyncio
    async def test_rollback_without_progress(self, rolling_strategy):
        result = await rolling_strategy.rollback("never-ran")

        assert not result.success
        assert result.error is ErrorKind.ROLLBACK
        assert "No rolling progress found" in result.message

    def test_pause_and_resume_toggle_the_control(self, rolling_strategy, state):
        assert rolling_strategy.pause("api-rollout")
        assert state.control_for("api-rollout").paused

        assert rolling_strategy.resume("api-rollout")
        assert not state.control_for("api-rollout").paused
