"""Per-deployment progress records and the pause/cancel control token."""

import asyncio
import builtins
import threading
from collections import deque

from ..exceptions import DeploymentCancelledError
from .enums import EnvironmentColor
from .models import CanaryAnalysisResult, CanaryStageInfo, RollingProgress, TrafficDistribution


class DeploymentControl:
    """Cooperative pause/cancel signal for one deployment.

    Strategies only observe it at suspension points; work already handed to
    the infrastructure adapter is never interrupted.
    """

    def __init__(self, deployment_id: str):
        self.deployment_id = deployment_id
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._cancelled = asyncio.Event()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def cancel(self) -> None:
        self._cancelled.set()
        # Wake anything blocked on a pause so it can observe the cancel.
        self._resumed.set()

    def check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise DeploymentCancelledError("Deployment cancelled", self.deployment_id)

    async def wait_if_paused(self, poll_interval: float = 1.0) -> None:
        """Block while paused, waking at least every ``poll_interval`` seconds."""
        self.check_cancelled()
        while not self._resumed.is_set():
            try:
                await asyncio.wait_for(self._resumed.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue
        self.check_cancelled()

    async def sleep(self, seconds: float) -> None:
        """Sleep that returns early with ``DeploymentCancelledError`` on cancel."""
        self.check_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.check_cancelled()


class DeploymentStateRepository:
    """Progress records keyed by deployment id.

    Each record is an immutable snapshot; writers replace whole records under
    a lock so readers never observe a half-written update.
    """

    def __init__(self, history_size: int = 1000):
        self._lock = threading.Lock()
        self._history_size = history_size
        self._rolling: builtins.dict[str, RollingProgress] = {}
        self._canary: builtins.dict[str, CanaryStageInfo] = {}
        self._analysis: builtins.dict[str, CanaryAnalysisResult] = {}
        self._traffic: builtins.dict[str, TrafficDistribution] = {}
        self._traffic_history: builtins.dict[str, deque] = {}
        self._active_colors: builtins.dict[str, EnvironmentColor] = {}
        self._rollback_colors: builtins.dict[str, EnvironmentColor] = {}
        self._controls: builtins.dict[str, DeploymentControl] = {}

    # Control tokens

    def control_for(self, deployment_id: str) -> DeploymentControl:
        """Return the control token for a deployment, creating it on first use."""
        with self._lock:
            control = self._controls.get(deployment_id)
            if control is None:
                control = DeploymentControl(deployment_id)
                self._controls[deployment_id] = control
            return control

    def reset_control(self, deployment_id: str) -> DeploymentControl:
        """Replace the control token with a fresh one for a new run."""
        with self._lock:
            control = DeploymentControl(deployment_id)
            self._controls[deployment_id] = control
            return control

    # Rolling

    def set_rolling_progress(self, deployment_id: str, progress: RollingProgress) -> None:
        with self._lock:
            self._rolling[deployment_id] = progress

    def get_rolling_progress(self, deployment_id: str) -> RollingProgress | None:
        with self._lock:
            return self._rolling.get(deployment_id)

    # Canary

    def set_canary_stage(self, deployment_id: str, info: CanaryStageInfo) -> None:
        with self._lock:
            self._canary[deployment_id] = info

    def get_canary_stage(self, deployment_id: str) -> CanaryStageInfo | None:
        with self._lock:
            return self._canary.get(deployment_id)

    def set_analysis(self, deployment_id: str, analysis: CanaryAnalysisResult) -> None:
        with self._lock:
            self._analysis[deployment_id] = analysis

    def get_analysis(self, deployment_id: str) -> CanaryAnalysisResult | None:
        with self._lock:
            return self._analysis.get(deployment_id)

    # Blue-green

    def set_traffic(self, deployment_id: str, distribution: TrafficDistribution) -> None:
        with self._lock:
            self._traffic[deployment_id] = distribution
            history = self._traffic_history.setdefault(
                deployment_id, deque(maxlen=self._history_size)
            )
            history.append(distribution)

    def get_traffic(self, deployment_id: str) -> TrafficDistribution | None:
        with self._lock:
            return self._traffic.get(deployment_id)

    def get_traffic_history(self, deployment_id: str) -> builtins.list[TrafficDistribution]:
        with self._lock:
            return list(self._traffic_history.get(deployment_id, ()))

    def get_active_color(self, deployment_id: str) -> EnvironmentColor | None:
        with self._lock:
            return self._active_colors.get(deployment_id)

    def commit_switch(
        self, deployment_id: str, active: EnvironmentColor, previous: EnvironmentColor
    ) -> None:
        """Record a finished switch; ``previous`` becomes the rollback color."""
        with self._lock:
            self._active_colors[deployment_id] = active
            self._rollback_colors[deployment_id] = previous

    def get_rollback_color(self, deployment_id: str) -> EnvironmentColor | None:
        with self._lock:
            return self._rollback_colors.get(deployment_id)

    def revert_switch(self, deployment_id: str) -> EnvironmentColor | None:
        """Make the rollback color active again. A switch reverts once."""
        with self._lock:
            previous = self._rollback_colors.pop(deployment_id, None)
            if previous is not None:
                self._active_colors[deployment_id] = previous
            return previous

    # Queries

    def progress_percentage(self, deployment_id: str) -> float | None:
        """Best available completion percentage for a deployment."""
        with self._lock:
            rolling = self._rolling.get(deployment_id)
            if rolling is not None:
                return rolling.percentage
            canary = self._canary.get(deployment_id)
            if canary is not None:
                return canary.percentage
            return None

    def known(self, deployment_id: str) -> bool:
        with self._lock:
            return any(
                deployment_id in records
                for records in (self._rolling, self._canary, self._traffic, self._active_colors)
            )

    def evict(self, deployment_id: str) -> None:
        """Drop every record held for a deployment."""
        with self._lock:
            for records in (
                self._rolling,
                self._canary,
                self._analysis,
                self._traffic,
                self._traffic_history,
                self._active_colors,
                self._rollback_colors,
                self._controls,
            ):
                records.pop(deployment_id, None)
