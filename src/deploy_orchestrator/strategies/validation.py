"""Shared validation result model used by every strategy and manager."""

import builtins
from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ValidationStepResult:
    """Outcome of a single validation check."""

    name: str
    success: bool
    message: str
    duration: float = 0.0

    @classmethod
    def passed(cls, name: str, message: str, duration: float = 0.0) -> "ValidationStepResult":
        return cls(name=name, success=True, message=message, duration=duration)

    @classmethod
    def failed(cls, name: str, message: str, duration: float = 0.0) -> "ValidationStepResult":
        return cls(name=name, success=False, message=message, duration=duration)


@dataclass(frozen=True)
class ValidationResult:
    """Itemized validation outcome.

    ``overall_score`` is the share of passing checks; an empty result scores
    1.0. Recommendations are only reported when at least one check failed.
    """

    success: bool
    results: tuple[ValidationStepResult, ...] = ()
    overall_score: float = 1.0
    recommendations: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_steps(
        cls,
        steps: Iterable[ValidationStepResult],
        recommendations: Iterable[str] = (),
    ) -> "ValidationResult":
        """Aggregate step results into a validation result."""
        results = tuple(steps)
        success = all(step.success for step in results)
        overall_score = (
            sum(1 for step in results if step.success) / len(results) if results else 1.0
        )
        return cls(
            success=success,
            results=results,
            overall_score=overall_score,
            recommendations=() if success else tuple(recommendations),
        )

    @classmethod
    def combine(cls, *validations: "ValidationResult") -> "ValidationResult":
        """Merge several validation results into one."""
        steps: builtins.list[ValidationStepResult] = []
        recommendations: builtins.list[str] = []
        for validation in validations:
            steps.extend(validation.results)
            recommendations.extend(validation.recommendations)
        return cls.from_steps(steps, recommendations)

    @property
    def failed_steps(self) -> tuple[ValidationStepResult, ...]:
        return tuple(step for step in self.results if not step.success)

    def get(self, name: str) -> ValidationStepResult | None:
        """Return the step result with the given name."""
        for step in self.results:
            if step.name == name:
                return step
        return None

    def failure_summary(self) -> str:
        """Join the messages of every failed step."""
        return ", ".join(step.message for step in self.failed_steps)
