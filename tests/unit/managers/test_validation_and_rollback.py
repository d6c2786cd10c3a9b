"""
Tests for the deployment validator, rollback manager and promotion manager.
"""

import pytest

from deploy_orchestrator import OrchestratorSettings
from deploy_orchestrator.managers import (
    DeploymentValidator,
    HealthCheckResult,
    PromotionManager,
    RollbackManager,
    promoted_deployment_id,
)
from deploy_orchestrator.strategies import (
    DeploymentEnvironment,
    DeploymentExecution,
    DeploymentResult,
    EnvironmentColor,
    ExecutionStatus,
    MetricsSnapshot,
    ValidationStepConfig,
)


def _execution(config, status=ExecutionStatus.COMPLETED):
    return DeploymentExecution(id="exec-1", deployment_id=config.id, config=config, status=status)


class TestDeploymentValidator:
    """Test strategy-independent checks."""

    @pytest.fixture
    def validator(self, health_checks, metrics_collector, settings):
        return DeploymentValidator(health_checks, metrics_collector, settings)

    def test_valid_configuration(self, validator, rolling_config):
        result = validator.validate_configuration(rolling_config())

        assert result.success
        assert result.get("infrastructure-provider").success
        assert result.get("component-api-resources").success

    def test_unsupported_provider(self, validator, rolling_config):
        result = validator.validate_configuration(rolling_config(infrastructure={"provider": "mainframe"}))

        assert not result.success
        assert result.get("infrastructure-provider").message.startswith("Invalid provider: mainframe")

    def test_component_problems(self, validator, rolling_config):
        config = rolling_config(
            components=[
                {"name": "api", "replicas": 2, "dependencies": ["db"]},
                {"name": "api", "replicas": 2, "resources": {"cpu": ""}},
            ]
        )

        result = validator.validate_configuration(config)

        failed = {step.name for step in result.failed_steps}
        assert failed == {"component-names", "component-api-dependencies", "component-api-resources"}

    def test_no_components(self, validator, rolling_config):
        result = validator.validate_configuration(rolling_config(components=[]))

        assert result.get("components-required").message == "At least one component must be configured"

    @pytest.mark.asyncio
    async def test_run_steps(self, validator, health_checks, metrics_collector):
        health_checks.register_check("smoke", lambda target: HealthCheckResult(False, "checkout smoke test failed"))
        metrics_collector.set_snapshot(MetricsSnapshot(response_time=300.0, error_rate=0.001), "orders")

        result = await validator.run_steps(
            "orders",
            [
                ValidationStepConfig(name="smoke", type="smoke"),
                ValidationStepConfig(
                    name="latency", type="performance", configuration={"max_response_time_ms": 250}
                ),
                ValidationStepConfig(name="synthetic", type="smoke", required=False),
            ],
            "post-deployment",
        )

        assert not result.success
        assert [step.name for step in result.failed_steps] == ["smoke", "latency"]
        assert result.get("synthetic").success
        assert result.get("synthetic").message.startswith("Optional check failed:")
        assert validator.get_validation_history("orders") == [result]

    @pytest.mark.asyncio
    async def test_validate_health_and_performance(self, validator):
        assert (await validator.validate_health("orders")).success
        assert (await validator.validate_performance("orders")).success


class TestRollbackManager:
    """Test rollback validation and history."""

    def test_completed_deployment_can_roll_back(self, rolling_config):
        result = RollbackManager().validate_rollback(_execution(rolling_config()))

        assert result.success
        assert result.get("rollback-target").message == "Rolling back to 1.9.0"

    def test_rollback_checks(self, rolling_config):
        manager = RollbackManager()

        disabled = manager.validate_rollback(_execution(rolling_config(rollback={"enabled": False})))
        pending = manager.validate_rollback(_execution(rolling_config(), ExecutionStatus.PENDING))
        rolled_back = manager.validate_rollback(_execution(rolling_config(), ExecutionStatus.ROLLED_BACK))
        same_version = manager.validate_rollback(_execution(rolling_config()), target_version="2.0.0")

        assert not disabled.get("rollback-enabled").success
        assert not pending.get("deployment-state").success
        assert not rolled_back.get("deployment-state").success
        assert not same_version.get("rollback-target").success

    def test_running_deployment_cannot_roll_back(self, rolling_config):
        manager = RollbackManager()

        running = manager.validate_rollback(_execution(rolling_config(), ExecutionStatus.IN_PROGRESS))
        paused = manager.validate_rollback(_execution(rolling_config(), ExecutionStatus.PAUSED))
        cancelled = manager.validate_rollback(_execution(rolling_config(), ExecutionStatus.CANCELLED))

        assert running.get("deployment-state").message == (
            "Deployment is still in-progress; cancel it before rolling back"
        )
        assert not paused.get("deployment-state").success
        assert cancelled.success

    def test_blue_green_needs_a_committed_switch(self, blue_green_config, rolling_config):
        manager = RollbackManager()
        execution = _execution(blue_green_config(), ExecutionStatus.FAILED)

        uncommitted = manager.validate_rollback(execution)
        committed = manager.validate_rollback(execution, rollback_color=EnvironmentColor.BLUE)

        assert not uncommitted.success
        assert not uncommitted.get("committed-switch").success
        assert committed.success
        assert committed.get("committed-switch").message == "Traffic returns to blue"
        assert manager.validate_rollback(_execution(rolling_config())).get("committed-switch") is None

    def test_history(self, rolling_config):
        manager = RollbackManager(history_size=2)
        execution = _execution(rolling_config())
        result = DeploymentResult(
            success=True,
            deployment_id=execution.deployment_id,
            execution_id="exec-1",
            status=ExecutionStatus.ROLLED_BACK,
            message="rolled back",
        )

        for reason in ("first", "second", "third"):
            manager.record_rollback(execution, result, reason)

        assert [record.reason for record in manager.get_rollback_history()] == ["second", "third"]
        assert manager.get_rollback_history("other") == []


class TestPromotionManager:
    """Test environment promotion."""

    @pytest.fixture
    def promotions(self):
        return PromotionManager(OrchestratorSettings())

    def test_promotion_must_move_forward(self, promotions, rolling_config):
        execution = _execution(rolling_config(environment="staging"))

        forward = promotions.validate_promotion(
            execution, DeploymentEnvironment.STAGING, DeploymentEnvironment.PRODUCTION
        )
        backward = promotions.validate_promotion(
            execution, DeploymentEnvironment.STAGING, DeploymentEnvironment.TEST
        )

        assert forward.success
        assert not backward.get("promotion-order").success

    def test_promotion_requires_completed_source(self, promotions, rolling_config):
        execution = _execution(rolling_config(environment="staging"), ExecutionStatus.FAILED)

        result = promotions.validate_promotion(
            execution, DeploymentEnvironment.PREVIEW, DeploymentEnvironment.PRODUCTION
        )

        failed = {step.name for step in result.failed_steps}
        assert failed == {"deployment-status", "source-environment"}

    @pytest.mark.asyncio
    async def test_promote_deploys_a_copy(self, promotions, rolling_config):
        execution = _execution(rolling_config(environment="staging"))
        deployed = []

        async def deploy(config):
            deployed.append(config)
            return DeploymentResult(
                success=True,
                deployment_id=config.id,
                execution_id="exec-2",
                status=ExecutionStatus.COMPLETED,
                message="done",
            )

        result = await promotions.promote(
            execution, DeploymentEnvironment.STAGING, DeploymentEnvironment.PRODUCTION, deploy
        )

        assert result.success
        assert result.deployment_id == promoted_deployment_id(execution.deployment_id, DeploymentEnvironment.PRODUCTION)
        assert result.deployment_id == "payments-rolling-production"
        assert deployed[0].environment is DeploymentEnvironment.PRODUCTION
        assert deployed[0].version == "2.0.0"
        assert promotions.get_promotion_history("payments-rolling") == [result]

    @pytest.mark.asyncio
    async def test_rejected_promotion_does_not_deploy(self, promotions, rolling_config):
        execution = _execution(rolling_config(environment="production"))

        async def deploy(config):
            raise AssertionError("should not deploy")

        result = await promotions.promote(
            execution, DeploymentEnvironment.PRODUCTION, DeploymentEnvironment.STAGING, deploy
        )

        assert not result.success
        assert result.deployment_id is None
        assert result.message.startswith("Promotion rejected:")


class TestInMemoryInfrastructure:
    """Test the recording adapter used by the other tests."""

    @pytest.mark.asyncio
    async def test_cleanup_marks_environment_terminated(self, infrastructure, blue_green_config):
        config = blue_green_config()
        await infrastructure.deploy_environment(config.id, EnvironmentColor.GREEN, config)
        await infrastructure.cleanup_environment(config.id, EnvironmentColor.GREEN)

        environment = infrastructure.environments[config.id][EnvironmentColor.GREEN]
        assert environment["status"] == "terminated"
        assert environment["replicas"] == 4
        assert [name for name, _ in infrastructure.calls] == ["deploy_environment", "cleanup_environment"]
