"""Validation management for deployments."""

import builtins
import logging
import time
from collections import defaultdict
from collections.abc import Iterable

from ..config import OrchestratorSettings
from ..strategies.base import health_step, performance_step
from ..strategies.models import CheckTarget, DeploymentConfig, ValidationStepConfig
from ..strategies.validation import ValidationResult, ValidationStepResult
from .health import HealthCheckManager
from .metrics import MetricsCollector

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("aws", "azure", "gcp", "kubernetes", "docker")


class DeploymentValidator:
    """Strategy-independent configuration checks and pre/post deployment checks."""

    def __init__(
        self,
        health_checks: HealthCheckManager,
        metrics_collector: MetricsCollector,
        settings: OrchestratorSettings | None = None,
    ):
        self.health_checks = health_checks
        self.metrics_collector = metrics_collector
        self.settings = settings or OrchestratorSettings()
        self.validation_results: builtins.dict[str, builtins.list[ValidationResult]] = defaultdict(list)

    def validate_configuration(self, config: DeploymentConfig) -> ValidationResult:
        """Checks that apply whatever the strategy."""
        steps = []
        recommendations = []

        if config.id and config.name and config.version:
            steps.append(ValidationStepResult.passed("basic-required-fields", "All required fields are present"))
        else:
            steps.append(
                ValidationStepResult.failed("basic-required-fields", "Missing required fields: id, name, or version")
            )
            recommendations.append("Set id, name and version on the deployment")

        provider = config.infrastructure.provider
        if provider in SUPPORTED_PROVIDERS:
            steps.append(ValidationStepResult.passed("infrastructure-provider", f"Provider '{provider}' is supported"))
        else:
            steps.append(
                ValidationStepResult.failed(
                    "infrastructure-provider",
                    f"Invalid provider: {provider}. Must be one of: {', '.join(SUPPORTED_PROVIDERS)}",
                )
            )
            recommendations.append("Use a supported infrastructure provider")

        steps.extend(self._component_steps(config, recommendations))

        if config.rollback.enabled:
            if config.rollback.timeout > 0:
                steps.append(
                    ValidationStepResult.passed("rollback-timeout", f"Rollback timeout is {config.rollback.timeout:g}s")
                )
            else:
                steps.append(ValidationStepResult.failed("rollback-timeout", "Rollback timeout must be positive"))
                recommendations.append("Set a positive rollback timeout")

        return ValidationResult.from_steps(steps, recommendations)

    def _component_steps(
        self, config: DeploymentConfig, recommendations: builtins.list[str]
    ) -> builtins.list[ValidationStepResult]:
        if not config.components:
            recommendations.append("Add at least one component to deploy")
            return [ValidationStepResult.failed("components-required", "At least one component must be configured")]

        steps = [
            ValidationStepResult.passed("components-required", f"{len(config.components)} components configured")
        ]
        names = config.component_names
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            steps.append(
                ValidationStepResult.failed("component-names", f"Duplicate component names: {', '.join(duplicates)}")
            )
            recommendations.append("Give every component a unique name")
        else:
            steps.append(ValidationStepResult.passed("component-names", "Component names are unique"))

        for component in config.components:
            if component.resources.cpu and component.resources.memory:
                steps.append(
                    ValidationStepResult.passed(
                        f"component-{component.name}-resources",
                        f"Component '{component.name}' resource requirements are valid",
                    )
                )
            else:
                steps.append(
                    ValidationStepResult.failed(
                        f"component-{component.name}-resources",
                        f"Component '{component.name}' missing resource requirements",
                    )
                )
                recommendations.append(f"Set cpu and memory for component '{component.name}'")

            if component.dependencies:
                invalid = [dep for dep in component.dependencies if dep not in names]
                if invalid:
                    steps.append(
                        ValidationStepResult.failed(
                            f"component-{component.name}-dependencies",
                            f"Component '{component.name}' has invalid dependencies: {', '.join(invalid)}",
                        )
                    )
                    recommendations.append(f"Remove or add the missing dependencies of '{component.name}'")
                else:
                    steps.append(
                        ValidationStepResult.passed(
                            f"component-{component.name}-dependencies",
                            f"Component '{component.name}' dependencies are valid",
                        )
                    )
        return steps

    async def run_steps(
        self, deployment_id: str, steps: Iterable[ValidationStepConfig], phase: str
    ) -> ValidationResult:
        """Run configured pre- or post-deployment checks.

        ``performance`` steps compare a metrics snapshot with the step's
        ``max_error_rate`` / ``max_response_time_ms``; every other type runs the
        health probe registered under that type. A failing optional step is
        reported but does not fail the result.
        """
        results = []
        for step in steps:
            result = await self._run_step(deployment_id, step)
            if not result.success and not step.required:
                result = ValidationStepResult.passed(
                    result.name, f"Optional check failed: {result.message}", result.duration
                )
            results.append(result)

        validation = ValidationResult.from_steps(
            results, recommendations=[f"Review failed {phase} checks before continuing"]
        )
        self.validation_results[deployment_id].append(validation)
        if not validation.success:
            logger.warning(f"{phase} validation failed for {deployment_id}: {validation.failure_summary()}")
        return validation

    async def _run_step(self, deployment_id: str, step: ValidationStepConfig) -> ValidationStepResult:
        start_time = time.perf_counter()
        target = CheckTarget(deployment_id=deployment_id, check=step.type, options=step.configuration)
        if step.type == "performance":
            snapshot = await self.metrics_collector.collect(target)
            result = performance_step(
                step.name,
                snapshot,
                step.configuration.get("max_error_rate", self.settings.batch_max_error_rate),
                step.configuration.get("max_response_time_ms", self.settings.batch_max_response_time_ms),
            )
            return ValidationStepResult(
                result.name, result.success, result.message, time.perf_counter() - start_time
            )
        return health_step(step.name, await self.health_checks.check(target))

    async def validate_health(self, deployment_id: str) -> ValidationResult:
        result = await self.health_checks.check(CheckTarget(deployment_id=deployment_id))
        return ValidationResult.from_steps(
            [health_step("health-check", result)], recommendations=["Check service health endpoints"]
        )

    async def validate_performance(self, deployment_id: str) -> ValidationResult:
        snapshot = await self.metrics_collector.collect(
            CheckTarget(deployment_id=deployment_id, check="performance")
        )
        return ValidationResult.from_steps(
            [
                performance_step(
                    "performance-check",
                    snapshot,
                    self.settings.environment_max_error_rate,
                    self.settings.environment_max_response_time_ms,
                )
            ],
            recommendations=["Investigate error rate and latency before promoting"],
        )

    def get_validation_history(self, deployment_id: str) -> builtins.list[ValidationResult]:
        return list(self.validation_results.get(deployment_id, []))
