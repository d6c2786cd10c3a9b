"""
Tests for the deployment control token and the state repository.
"""

import asyncio

import pytest

from deploy_orchestrator import DeploymentCancelledError
from deploy_orchestrator.strategies import (
    CanaryStageInfo,
    DeploymentControl,
    DeploymentStateRepository,
    EnvironmentColor,
    RollingProgress,
    TrafficDistribution,
)


class TestDeploymentControl:
    """Test cooperative pause and cancel."""

    @pytest.mark.asyncio
    async def test_wait_if_paused_blocks_until_resume(self):
        control = DeploymentControl("api")
        control.pause()

        waiter = asyncio.create_task(control.wait_if_paused(poll_interval=0.01))
        await asyncio.sleep(0.03)
        assert not waiter.done()

        control.resume()
        await asyncio.wait_for(waiter, timeout=1.0)
        assert not control.paused

    @pytest.mark.asyncio
    async def test_cancel_wakes_a_paused_waiter(self):
        control = DeploymentControl("api")
        control.pause()

        waiter = asyncio.create_task(control.wait_if_paused(poll_interval=0.01))
        await asyncio.sleep(0.01)
        control.cancel()

        with pytest.raises(DeploymentCancelledError):
            await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_sleep_returns_early_on_cancel(self):
        control = DeploymentControl("api")

        sleeper = asyncio.create_task(control.sleep(10))
        await asyncio.sleep(0.01)
        control.cancel()

        with pytest.raises(DeploymentCancelledError):
            await asyncio.wait_for(sleeper, timeout=1.0)

    @pytest.mark.asyncio
    async def test_sleep_completes_normally(self):
        control = DeploymentControl("api")

        await control.sleep(0.01)
        await control.sleep(0)

        assert not control.cancelled


class TestDeploymentStateRepository:
    """Test progress records."""

    def test_progress_percentage_prefers_rolling(self):
        state = DeploymentStateRepository()
        assert state.progress_percentage("api") is None

        state.set_canary_stage("api", CanaryStageInfo(current_stage=1, total_stages=3, percentage=50.0))
        assert state.progress_percentage("api") == 50.0

        state.set_rolling_progress("api", RollingProgress(total_replicas=4, percentage=25.0))
        assert state.progress_percentage("api") == 25.0

    def test_traffic_history_is_bounded(self):
        state = DeploymentStateRepository(history_size=3)

        for percentage in (10, 20, 30, 40):
            state.set_traffic("web", TrafficDistribution.towards(EnvironmentColor.GREEN, percentage))

        assert [entry.green for entry in state.get_traffic_history("web")] == [20.0, 30.0, 40.0]
        assert state.get_traffic("web").green == 40.0

    def test_reset_control_replaces_the_token(self):
        state = DeploymentStateRepository()
        old = state.control_for("api")
        old.cancel()

        new = state.reset_control("api")

        assert new is not old
        assert state.control_for("api") is new
        assert not new.cancelled

    def test_committed_switch_reverts_once(self):
        state = DeploymentStateRepository()
        assert state.revert_switch("web") is None

        state.commit_switch("web", EnvironmentColor.GREEN, EnvironmentColor.BLUE)

        assert state.get_active_color("web") is EnvironmentColor.GREEN
        assert state.get_rollback_color("web") is EnvironmentColor.BLUE
        assert state.revert_switch("web") is EnvironmentColor.BLUE
        assert state.get_active_color("web") is EnvironmentColor.BLUE
        assert state.get_rollback_color("web") is None
        assert state.revert_switch("web") is None

    def test_evict(self):
        state = DeploymentStateRepository()
        state.commit_switch("web", EnvironmentColor.GREEN, EnvironmentColor.BLUE)
        state.set_traffic("web", TrafficDistribution.all_on(EnvironmentColor.GREEN))
        assert state.known("web")

        state.evict("web")

        assert not state.known("web")
        assert state.get_traffic_history("web") == []
        assert state.get_rollback_color("web") is None
