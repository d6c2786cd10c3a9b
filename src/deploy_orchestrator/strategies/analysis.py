"""
Canary analysis policy.

Scores a metrics snapshot by subtracting a penalty for every metric outside
its threshold and maps the resulting confidence to a recommendation. Progression
rules from the canary configuration can tune the thresholds and penalties and
add hard rollback, gate and hold conditions.
"""

import builtins
import operator
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from ..exceptions import ConfigurationError
from .enums import CanaryRecommendation
from .models import CanaryAnalysisResult, MetricsSnapshot, ProgressionRuleConfig, to_snake_case

CONFIDENCE = "confidence"

_OPERATORS: builtins.dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

# Word forms used by metric threshold configs.
OPERATOR_ALIASES = {"lt": "<", "lte": "<=", "gt": ">", "gte": ">=", "eq": "==", "ne": "!="}

_CONDITION_RE = re.compile(
    r"^\s*(?P<metric>[A-Za-z_][A-Za-z0-9_]*)\s*"
    r"(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<value>-?\d+(?:\.\d+)?)\s*(?P<percent>%?)\s*$"
)


@dataclass(frozen=True)
class Condition:
    """A ``<metric> <op> <number>`` comparison."""

    metric: str
    operator: str
    threshold: float

    def __post_init__(self):
        if self.operator not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {self.operator}")

    @classmethod
    def parse(cls, text: str) -> "Condition":
        match = _CONDITION_RE.match(text or "")
        if not match:
            raise ValueError(f"Cannot parse condition: {text!r}")
        threshold = float(match.group("value"))
        metric = to_snake_case(match.group("metric"))
        # "error_rate < 5%" means a fraction of 0.05.
        if match.group("percent") and metric == "error_rate":
            threshold /= 100.0
        return cls(metric=metric, operator=match.group("op"), threshold=threshold)

    def holds(self, value: float) -> bool:
        return _OPERATORS[self.operator](value, self.threshold)

    def __str__(self) -> str:
        return f"{self.metric} {self.operator} {self.threshold:g}"


@dataclass(frozen=True)
class MetricPenalty:
    """Confidence deducted when ``condition`` holds for a snapshot."""

    condition: Condition
    weight: float
    reason: str

    def applies(self, snapshot: MetricsSnapshot) -> bool:
        return self.condition.holds(snapshot.value(self.condition.metric))

    def describe(self, snapshot: MetricsSnapshot) -> str:
        return self.reason.format(value=snapshot.value(self.condition.metric))


DEFAULT_PENALTIES: tuple[MetricPenalty, ...] = (
    MetricPenalty(Condition("error_rate", ">", 0.02), 0.3, "High error rate: {value:.2%}"),
    MetricPenalty(Condition("response_time", ">", 120.0), 0.2, "High response time: {value:.0f}ms"),
    MetricPenalty(Condition("availability", "<", 99.0), 0.4, "Low availability: {value:.2f}%"),
    MetricPenalty(Condition("cpu", ">", 90.0), 0.1, "High CPU usage: {value:.1f}%"),
    MetricPenalty(Condition("memory", ">", 90.0), 0.1, "High memory usage: {value:.1f}%"),
)

DEFAULT_ROLLBACK_WHEN = Condition(CONFIDENCE, "<", 0.3)
DEFAULT_PROMOTE_WHEN = Condition(CONFIDENCE, ">", 0.8)


@dataclass(frozen=True)
class CanaryAnalysisPolicy:
    """Penalties, decision thresholds and rule-based overrides."""

    penalties: tuple[MetricPenalty, ...] = DEFAULT_PENALTIES
    rollback_when: Condition = DEFAULT_ROLLBACK_WHEN
    promote_when: Condition = DEFAULT_PROMOTE_WHEN
    rollback_conditions: tuple[Condition, ...] = ()
    promote_gates: tuple[Condition, ...] = ()
    hold_conditions: tuple[Condition, ...] = ()

    @classmethod
    def from_rules(cls, rules: Iterable[ProgressionRuleConfig]) -> "CanaryAnalysisPolicy":
        """Build a policy from progression rules.

        Raises ``ConfigurationError`` for a rule that cannot be parsed or whose
        action does not apply to its metric.
        """
        policy = cls()
        for rule in rules:
            policy = policy._apply_rule(rule)
        return policy

    def _apply_rule(self, rule: ProgressionRuleConfig) -> "CanaryAnalysisPolicy":
        try:
            condition = Condition.parse(rule.condition)
        except ValueError as e:
            raise ConfigurationError(f"Invalid progression rule '{rule.name}': {e}") from e

        action = rule.action.strip().lower()
        if condition.metric == CONFIDENCE:
            if action == "rollback":
                return replace(self, rollback_when=condition)
            if action == "promote":
                return replace(self, promote_when=condition)
            raise ConfigurationError(
                f"Invalid progression rule '{rule.name}': confidence rules support "
                f"'rollback' and 'promote', got '{rule.action}'"
            )

        if condition.metric not in MetricsSnapshot.FIELDS:
            raise ConfigurationError(
                f"Invalid progression rule '{rule.name}': unknown metric '{condition.metric}'"
            )

        if action == "penalize":
            if rule.weight is None or rule.weight < 0:
                raise ConfigurationError(
                    f"Invalid progression rule '{rule.name}': penalize rules need a non-negative weight"
                )
            label = rule.name.replace("{", "{{").replace("}", "}}")
            penalty = MetricPenalty(
                condition, float(rule.weight), f"{label}: {condition.metric}={{value:g}}"
            )
            kept = tuple(p for p in self.penalties if p.condition.metric != condition.metric)
            return replace(self, penalties=kept + (penalty,))
        if action == "rollback":
            return replace(self, rollback_conditions=self.rollback_conditions + (condition,))
        if action == "promote":
            return replace(self, promote_gates=self.promote_gates + (condition,))
        if action in ("hold", "continue"):
            return replace(self, hold_conditions=self.hold_conditions + (condition,))
        raise ConfigurationError(f"Invalid progression rule '{rule.name}': unknown action '{rule.action}'")

    def decide(self, confidence: float) -> CanaryRecommendation:
        if self.rollback_when.holds(confidence):
            return CanaryRecommendation.ROLLBACK
        if self.promote_when.holds(confidence):
            return CanaryRecommendation.PROMOTE
        return CanaryRecommendation.CONTINUE

    def evaluate(self, snapshot: MetricsSnapshot) -> CanaryAnalysisResult:
        confidence = 1.0
        reasons: builtins.list[str] = []
        for penalty in self.penalties:
            if penalty.applies(snapshot):
                confidence -= penalty.weight
                reasons.append(penalty.describe(snapshot))
        # Rounded so that e.g. 1.0 - 0.3 - 0.4 compares equal to 0.3.
        confidence = round(min(1.0, max(0.0, confidence)), 6)
        if not reasons:
            reasons.append("all metrics nominal")

        recommendation = self.decide(confidence)

        triggered = [c for c in self.rollback_conditions if c.holds(snapshot.value(c.metric))]
        if triggered:
            recommendation = CanaryRecommendation.ROLLBACK
            reasons.extend(f"Rollback rule triggered: {c}" for c in triggered)
        elif recommendation is CanaryRecommendation.PROMOTE:
            unmet = [c for c in self.promote_gates if not c.holds(snapshot.value(c.metric))]
            held = [c for c in self.hold_conditions if c.holds(snapshot.value(c.metric))]
            if unmet or held:
                recommendation = CanaryRecommendation.CONTINUE
                reasons.extend(f"Promotion gate not met: {c}" for c in unmet)
                reasons.extend(f"Hold rule triggered: {c}" for c in held)

        return CanaryAnalysisResult(
            recommendation=recommendation,
            confidence=confidence,
            metrics=snapshot,
            reasons=tuple(reasons),
        )


DEFAULT_POLICY = CanaryAnalysisPolicy()


def decide(confidence: float, policy: CanaryAnalysisPolicy | None = None) -> CanaryRecommendation:
    """Map a confidence score to a recommendation."""
    return (policy or DEFAULT_POLICY).decide(confidence)


def evaluate_canary_metrics(
    snapshot: MetricsSnapshot, policy: CanaryAnalysisPolicy | None = None
) -> CanaryAnalysisResult:
    """Score a snapshot and recommend promote, continue or rollback."""
    return (policy or DEFAULT_POLICY).evaluate(snapshot)
