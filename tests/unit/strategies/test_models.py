"""
Tests for deployment configuration parsing and the progress records.
"""

from datetime import timedelta

import pytest

from deploy_orchestrator.strategies import (
    DeploymentConfig,
    DeploymentEnvironment,
    DeploymentExecution,
    DeploymentFilter,
    EnvironmentColor,
    ExecutionStatus,
    MetricsSnapshot,
    StrategyType,
    TrafficDistribution,
    TrafficSwitchType,
    ValidationResult,
    ValidationStepResult,
)


class TestDeploymentConfig:
    """Test building configs from mappings."""

    def test_camel_case_mapping(self):
        config = DeploymentConfig.from_dict(
            {
                "id": "orders",
                "name": "orders",
                "version": "1.2.0",
                "strategy": "blue_green",
                "environment": "production",
                "components": [
                    {"name": "api", "replicas": 2, "resources": {"cpu": "500m", "memory": "1Gi"}},
                    {"name": "worker", "replicas": 4, "dependencies": ["api"]},
                ],
                "infrastructure": {
                    "provider": "gcp",
                    "region": "europe-west4",
                    "networking": {"subnets": ["a"], "loadBalancer": {"scheme": "internal"}},
                },
                "blueGreen": {
                    "switchTraffic": {"type": "gradual", "steps": [{"percentage": 50, "duration": 30}]},
                    "warmupDuration": 15,
                },
                "rollback": {"automatic": True, "timeout": 120},
                "approvals": [{"stage": "production", "approvers": ["lead"]}],
                "validation": {"postDeployment": [{"name": "smoke", "type": "smoke", "required": False}]},
            }
        )

        assert config.strategy is StrategyType.BLUE_GREEN
        assert config.environment is DeploymentEnvironment.PRODUCTION
        assert config.total_replicas == 6
        assert config.component_names == ["api", "worker"]
        assert config.components[0].resources.cpu == "500m"
        assert config.components[1].dependencies == ("api",)
        assert config.infrastructure.regions == ("europe-west4",)
        assert config.infrastructure.networking.load_balancer.scheme == "internal"
        assert config.blue_green.switch_traffic.type is TrafficSwitchType.GRADUAL
        assert config.blue_green.switch_traffic.steps[0].duration == 30
        assert config.blue_green.warmup_duration == 15
        assert config.rollback.automatic
        assert config.rollback.timeout == 120
        assert config.approvals[0].approvers == ("lead",)
        assert config.validation.post_deployment[0].required is False
        assert config.rolling is None
        assert config.canary is None

    def test_strategy_config_from_metadata(self):
        config = DeploymentConfig.from_dict(
            {
                "id": "search",
                "strategy": "rolling",
                "metadata": {"rollingConfig": {"batchSize": "25%", "pauseBetweenBatches": 5}},
            }
        )

        assert config.name == "search"
        assert config.version == "latest"
        assert config.environment is DeploymentEnvironment.DEVELOPMENT
        assert config.rolling.batch_size == "25%"
        assert config.rolling.pause_between_batches == 5
        assert config.metadata == {"rollingConfig": {"batchSize": "25%", "pauseBetweenBatches": 5}}

    def test_config_sequences_are_immutable(self):
        source = {
            "id": "orders",
            "strategy": "canary",
            "components": [{"name": "api", "replicas": 2}],
            "canary": {"stages": [{"name": "s1", "percentage": 10}, {"name": "s2", "percentage": 100}]},
        }
        config = DeploymentConfig.from_dict(source)

        source["components"].append({"name": "worker"})
        source["canary"]["stages"].clear()

        assert isinstance(config.components, tuple)
        assert isinstance(config.canary.stages, tuple)
        assert config.component_names == ["api"]
        assert len(config.canary.stages) == 2
        with pytest.raises(AttributeError):
            config.canary.stages.append(config.canary.stages[0])

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            DeploymentConfig.from_dict({"id": "x", "strategy": "big-bang"})

    def test_for_environment(self):
        config = DeploymentConfig.from_dict({"id": "search", "strategy": "rolling", "environment": "staging"})

        promoted = config.for_environment(DeploymentEnvironment.PRODUCTION, "search-production")

        assert promoted.id == "search-production"
        assert promoted.environment is DeploymentEnvironment.PRODUCTION
        assert config.environment is DeploymentEnvironment.STAGING


class TestTrafficDistribution:
    """Test the blue/green traffic split invariant."""

    def test_must_sum_to_100(self):
        with pytest.raises(ValueError):
            TrafficDistribution(blue=60.0, green=60.0)

    def test_towards_clamps(self):
        assert TrafficDistribution.towards(EnvironmentColor.GREEN, 140).green == 100.0
        assert TrafficDistribution.towards(EnvironmentColor.BLUE, -5).blue == 0.0

    def test_percentage_for(self):
        distribution = TrafficDistribution.towards(EnvironmentColor.GREEN, 30)

        assert distribution.percentage_for(EnvironmentColor.GREEN) == 30.0
        assert distribution.percentage_for(EnvironmentColor.BLUE) == 70.0


class TestMetricsSnapshot:
    """Test metric lookup."""

    def test_value_accepts_camel_case(self):
        snapshot = MetricsSnapshot.from_mapping({"errorRate": "0.02", "responseTime": 80})

        assert snapshot.value("errorRate") == 0.02
        assert snapshot.value("response_time") == 80.0
        assert snapshot.as_dict()["availability"] == 100.0

    def test_unknown_metric(self):
        with pytest.raises(KeyError):
            MetricsSnapshot().value("latency_p99")


class TestValidationResult:
    """Test validation aggregation."""

    def test_score_and_recommendations(self):
        result = ValidationResult.from_steps(
            [ValidationStepResult.passed("a", "ok"), ValidationStepResult.failed("b", "broken")],
            recommendations=["fix b"],
        )

        assert not result.success
        assert result.overall_score == 0.5
        assert result.recommendations == ("fix b",)
        assert result.failure_summary() == "broken"

    def test_success_drops_recommendations(self):
        result = ValidationResult.from_steps([ValidationStepResult.passed("a", "ok")], ["unused"])

        assert result.success
        assert result.recommendations == ()

    def test_empty_result_scores_one(self):
        result = ValidationResult.from_steps([])

        assert result.success
        assert result.overall_score == 1.0

    def test_combine(self):
        combined = ValidationResult.combine(
            ValidationResult.from_steps([ValidationStepResult.passed("a", "ok")]),
            ValidationResult.from_steps([ValidationStepResult.failed("b", "broken")], ["fix b"]),
        )

        assert [step.name for step in combined.results] == ["a", "b"]
        assert combined.recommendations == ("fix b",)


class TestDeploymentFilter:
    """Test filtering executions."""

    def _execution(self, deployment_id, environment, status, components):
        config = DeploymentConfig.from_dict(
            {
                "id": deployment_id,
                "strategy": "rolling",
                "environment": environment,
                "components": [{"name": name, "replicas": 2} for name in components],
            }
        )
        return DeploymentExecution(id=f"exec-{deployment_id}", deployment_id=deployment_id, config=config, status=status)

    def test_matches(self):
        execution = self._execution("a", "staging", ExecutionStatus.COMPLETED, ["api", "worker"])

        assert DeploymentFilter().matches(execution)
        assert DeploymentFilter(environment=DeploymentEnvironment.STAGING, component="worker").matches(execution)
        assert not DeploymentFilter(status=ExecutionStatus.FAILED).matches(execution)
        assert not DeploymentFilter(component="billing").matches(execution)
        assert not DeploymentFilter(start_date=execution.start_time + timedelta(seconds=1)).matches(execution)
        assert DeploymentFilter(end_date=execution.start_time + timedelta(seconds=1)).matches(execution)

    def test_snapshot_is_detached(self):
        execution = self._execution("a", "staging", ExecutionStatus.IN_PROGRESS, ["api"])

        snapshot = execution.snapshot()
        execution.logs.append(object())
        execution.progress.percentage = 50.0

        assert snapshot.logs == []
        assert snapshot.progress.percentage == 0.0
