"""Health check management for deployments."""

import asyncio
import builtins
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from ..strategies.models import CheckTarget, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthCheckResult:
    """Result of a health probe."""

    success: bool
    message: str
    duration: float = 0.0
    check: str = "health"
    checked_at: datetime = field(default_factory=utc_now, compare=False)


ProbeOutcome = Union[bool, HealthCheckResult]
HealthProbe = Callable[[CheckTarget], Union[ProbeOutcome, Awaitable[ProbeOutcome]]]


class HealthCheckManager:
    """Runs pluggable health probes keyed by check type.

    A check type with no registered probe passes; register a probe for
    ``health``, ``connectivity``, ``smoke`` or any custom type to make it real.
    """

    def __init__(self, monitoring_interval: float = 30.0):
        self.monitoring_interval = monitoring_interval
        self._probes: builtins.dict[str, HealthProbe] = {}
        self._status: builtins.dict[str, HealthCheckResult] = {}
        self._monitors: builtins.dict[str, asyncio.Task] = {}

    def register_check(self, check_type: str, probe: HealthProbe) -> None:
        """Register a sync or async probe for ``check_type``."""
        self._probes[check_type] = probe

    def unregister_check(self, check_type: str) -> None:
        self._probes.pop(check_type, None)

    async def check(self, target: CheckTarget) -> HealthCheckResult:
        """Run the probe registered for ``target.check``."""
        probe = self._probes.get(target.check)
        start_time = time.perf_counter()
        if probe is None:
            return HealthCheckResult(
                success=True,
                message=f"No {target.check} probe registered",
                check=target.check,
            )

        try:
            outcome = probe(target)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            logger.warning(f"{target.check} probe failed for deployment {target.deployment_id}: {e}")
            return HealthCheckResult(
                success=False,
                message=f"{target.check} check error: {e}",
                duration=time.perf_counter() - start_time,
                check=target.check,
            )

        duration = time.perf_counter() - start_time
        if isinstance(outcome, HealthCheckResult):
            return outcome
        return HealthCheckResult(
            success=bool(outcome),
            message=f"{target.check} check {'passed' if outcome else 'failed'}",
            duration=duration,
            check=target.check,
        )

    def start_monitoring(self, deployment_id: str, interval: float | None = None) -> None:
        """Probe a deployment periodically until :meth:`stop_monitoring`."""
        if deployment_id in self._monitors:
            return
        interval = interval or self.monitoring_interval
        self._monitors[deployment_id] = asyncio.create_task(
            self._monitor(deployment_id, interval), name=f"health-monitor-{deployment_id}"
        )
        logger.info(f"Started health monitoring for deployment {deployment_id}")

    async def _monitor(self, deployment_id: str, interval: float) -> None:
        target = CheckTarget(deployment_id=deployment_id, check="health")
        while True:
            result = await self.check(target)
            self._status[deployment_id] = result
            if not result.success:
                logger.warning(f"Deployment {deployment_id} unhealthy: {result.message}")
            await asyncio.sleep(interval)

    def stop_monitoring(self, deployment_id: str) -> bool:
        task = self._monitors.pop(deployment_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info(f"Stopped health monitoring for deployment {deployment_id}")
        return True

    def is_monitoring(self, deployment_id: str) -> bool:
        return deployment_id in self._monitors

    def get_health_status(self, deployment_id: str) -> HealthCheckResult | None:
        """Latest monitoring result, if any probe has run."""
        return self._status.get(deployment_id)

    async def shutdown(self) -> None:
        """Stop every monitor and wait for the tasks to finish."""
        tasks = list(self._monitors.values())
        self._monitors.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
