"""Infrastructure adapter interface and an in-memory implementation."""

import builtins
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Any

from ..strategies.enums import EnvironmentColor
from ..strategies.models import DeploymentBatch, DeploymentConfig, TrafficDistribution, utc_now

logger = logging.getLogger(__name__)


class InfrastructureAdapter(ABC):
    """Actions a strategy asks the platform to perform.

    Strategies decide when and how much; implementations talk to the actual
    cluster, load balancer or cloud API.
    """

    @abstractmethod
    async def deploy_batch(self, deployment_id: str, batch: DeploymentBatch, version: str) -> None:
        """Replace the replicas in ``batch`` with ``version``."""

    @abstractmethod
    async def wait_for_ready(self, deployment_id: str, batch: DeploymentBatch, timeout: float) -> bool:
        """Return True once every replica in ``batch`` is ready."""

    @abstractmethod
    async def restore_previous_version(self, deployment_id: str, version: str | None) -> None:
        """Put the previous version back on every replica."""

    @abstractmethod
    async def set_canary_traffic(self, deployment_id: str, percentage: float) -> None:
        """Route ``percentage`` of traffic to the canary."""

    @abstractmethod
    async def deploy_environment(
        self, deployment_id: str, color: EnvironmentColor, config: DeploymentConfig
    ) -> None:
        """Provision the ``color`` environment with the new version."""

    @abstractmethod
    async def set_traffic_weights(self, deployment_id: str, distribution: TrafficDistribution) -> None:
        """Apply a blue/green traffic split."""

    @abstractmethod
    async def cleanup_environment(self, deployment_id: str, color: EnvironmentColor) -> None:
        """Tear down the idle ``color`` environment."""


class InMemoryInfrastructureAdapter(InfrastructureAdapter):
    """Adapter that records every call and completes immediately."""

    def __init__(self, ready: bool = True):
        self.ready = ready
        self.calls: builtins.list[tuple[str, builtins.dict[str, Any]]] = []
        self.deployed_batches: builtins.dict[str, builtins.list[DeploymentBatch]] = defaultdict(list)
        self.versions: builtins.dict[str, str] = {}
        self.canary_traffic: builtins.dict[str, float] = {}
        self.traffic_weights: builtins.dict[str, TrafficDistribution] = {}
        self.environments: builtins.dict[str, builtins.dict[EnvironmentColor, builtins.dict[str, Any]]] = (
            defaultdict(dict)
        )

    def _record(self, action: str, **details: Any) -> None:
        self.calls.append((action, details))
        logger.debug(f"Infrastructure call {action}: {details}")

    def calls_for(self, action: str) -> builtins.list[builtins.dict[str, Any]]:
        """Details of every recorded call to ``action``."""
        return [details for name, details in self.calls if name == action]

    async def deploy_batch(self, deployment_id: str, batch: DeploymentBatch, version: str) -> None:
        self._record("deploy_batch", deployment_id=deployment_id, batch=batch, version=version)
        self.deployed_batches[deployment_id].append(batch)
        self.versions[deployment_id] = version

    async def wait_for_ready(self, deployment_id: str, batch: DeploymentBatch, timeout: float) -> bool:
        self._record("wait_for_ready", deployment_id=deployment_id, batch=batch, timeout=timeout)
        return self.ready

    async def restore_previous_version(self, deployment_id: str, version: str | None) -> None:
        self._record("restore_previous_version", deployment_id=deployment_id, version=version)
        self.deployed_batches.pop(deployment_id, None)
        if version:
            self.versions[deployment_id] = version
        else:
            self.versions.pop(deployment_id, None)

    async def set_canary_traffic(self, deployment_id: str, percentage: float) -> None:
        self._record("set_canary_traffic", deployment_id=deployment_id, percentage=percentage)
        self.canary_traffic[deployment_id] = percentage

    async def deploy_environment(
        self, deployment_id: str, color: EnvironmentColor, config: DeploymentConfig
    ) -> None:
        self._record("deploy_environment", deployment_id=deployment_id, color=color, version=config.version)
        created_at: datetime = utc_now()
        self.environments[deployment_id][color] = {
            "version": config.version,
            "status": "ready",
            "replicas": config.total_replicas,
            "created_at": created_at,
        }

    async def set_traffic_weights(self, deployment_id: str, distribution: TrafficDistribution) -> None:
        self._record(
            "set_traffic_weights",
            deployment_id=deployment_id,
            blue=distribution.blue,
            green=distribution.green,
        )
        self.traffic_weights[deployment_id] = distribution

    async def cleanup_environment(self, deployment_id: str, color: EnvironmentColor) -> None:
        self._record("cleanup_environment", deployment_id=deployment_id, color=color)
        environment = self.environments[deployment_id].get(color)
        if environment is not None:
            environment["status"] = "terminated"
