"""Metrics collector interface."""

import builtins
from abc import ABC, abstractmethod

from ..strategies.models import CheckTarget, MetricsSnapshot

NOMINAL_SNAPSHOT = MetricsSnapshot(
    response_time=50.0,
    error_rate=0.001,
    throughput=1000.0,
    availability=99.95,
    cpu=35.0,
    memory=40.0,
    network=10.0,
    storage=20.0,
)


class MetricsCollector(ABC):
    """Source of point-in-time metrics for a deployment target."""

    @abstractmethod
    async def collect(self, target: CheckTarget) -> MetricsSnapshot:
        """Return the current metrics for ``target``."""


class StaticMetricsCollector(MetricsCollector):
    """Collector returning configured snapshots.

    A snapshot set for a deployment id takes precedence over the default.
    Queued snapshots are consumed one per ``collect`` call before falling back.
    """

    def __init__(self, snapshot: MetricsSnapshot | None = None):
        self.default = snapshot or NOMINAL_SNAPSHOT
        self._per_deployment: builtins.dict[str, MetricsSnapshot] = {}
        self._queued: builtins.dict[str, builtins.list[MetricsSnapshot]] = {}
        self.collected: builtins.list[CheckTarget] = []

    def set_snapshot(self, snapshot: MetricsSnapshot, deployment_id: str | None = None) -> None:
        if deployment_id is None:
            self.default = snapshot
        else:
            self._per_deployment[deployment_id] = snapshot

    def queue(self, deployment_id: str, *snapshots: MetricsSnapshot) -> None:
        self._queued.setdefault(deployment_id, []).extend(snapshots)

    async def collect(self, target: CheckTarget) -> MetricsSnapshot:
        self.collected.append(target)
        queued = self._queued.get(target.deployment_id)
        if queued:
            return queued.pop(0)
        return self._per_deployment.get(target.deployment_id, self.default)
