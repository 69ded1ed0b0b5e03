"""Tests for the device monitor poll loop."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock, patch

import pytest

from kin.config import MonitorConfig
from kin.device.auth import DeviceAuthError, DeviceToken
from kin.device.interventions import Intervention, InterventionResult
from kin.device.monitor import DeviceMonitor, main
from kin.device.orchestrator import OrchestratorAuthError, OrchestratorError

pytestmark = pytest.mark.anyio


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def client():
    mock = AsyncMock()
    mock.send_heartbeat.return_value = {"interventions": []}
    return mock


@pytest.fixture
def authenticator():
    mock = Mock()
    mock.ensure_token = AsyncMock(return_value="jwt")
    mock.token = DeviceToken("jwt", expires_at=10_000.0)
    return mock


@pytest.fixture
def metrics():
    mock = Mock()
    mock.collect.return_value = {"cpu_usage_percent": 10.0}
    return mock


@pytest.fixture
def executor():
    mock = Mock()
    mock.execute = AsyncMock(return_value=InterventionResult.CONTINUE)
    return mock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(monitor_config: MonitorConfig, client, authenticator, metrics, executor, clock, mock_logger):
    return DeviceMonitor(
        monitor_config,
        client=client,
        authenticator=authenticator,
        metrics=metrics,
        executor=executor,
        log_reader=Mock(return_value="recent logs"),
        clock=clock,
        sleep=AsyncMock(),
        logger=mock_logger,
    )


class TestPollOnce:
    async def test_first_heartbeat_carries_logs_and_metrics(self, monitor, client):
        await monitor.poll_once()

        client.send_heartbeat.assert_awaited_once_with(
            "jwt", logs="recent logs", metrics={"cpu_usage_percent": 10.0}
        )

    async def test_logs_are_rate_limited(self, monitor, client, clock):
        await monitor.poll_once()
        clock.now = 10.0
        await monitor.poll_once()
        clock.now = 60.0
        await monitor.poll_once()

        calls = client.send_heartbeat.await_args_list
        assert calls[0].kwargs["logs"] == "recent logs"
        assert calls[1].kwargs == {"logs": None, "metrics": None}
        assert calls[2].kwargs["logs"] == "recent logs"

    async def test_log_reader_gets_service_and_line_count(self, monitor):
        await monitor.poll_once()
        monitor._log_reader.assert_called_once_with("agent-launcher", 100)

    async def test_metrics_failure_still_sends_logs(self, monitor, client, metrics):
        metrics.collect.side_effect = RuntimeError("psutil exploded")

        await monitor.poll_once()

        client.send_heartbeat.assert_awaited_once_with("jwt", logs="recent logs", metrics=None)

    async def test_auth_failure_skips_heartbeat(self, monitor, client, authenticator, mock_logger):
        authenticator.ensure_token.side_effect = DeviceAuthError("Invalid challenge response")

        result = await monitor.poll_once()

        assert result is InterventionResult.CONTINUE
        client.send_heartbeat.assert_not_awaited()
        message = mock_logger.error.call_args.args[0] % mock_logger.error.call_args.args[1:]
        assert message == "Authentication failed (Invalid challenge response), retrying in 10 seconds..."

    async def test_rejected_token_is_invalidated(self, monitor, client, authenticator):
        client.send_heartbeat.side_effect = OrchestratorAuthError("401")

        await monitor.poll_once()

        authenticator.invalidate.assert_called_once()

    async def test_heartbeat_error_keeps_token(self, monitor, client, authenticator):
        client.send_heartbeat.side_effect = OrchestratorError("502")

        assert await monitor.poll_once() is InterventionResult.CONTINUE
        authenticator.invalidate.assert_not_called()

    async def test_empty_response_logged(self, monitor, client, executor, mock_logger):
        client.send_heartbeat.return_value = None

        await monitor.poll_once()

        mock_logger.error.assert_called_with("Empty heartbeat response")
        executor.execute.assert_not_awaited()

    async def test_interventions_executed_in_order(self, monitor, client, executor):
        client.send_heartbeat.return_value = {
            "interventions": [{"id": "1", "type": "restart"}, {"id": "2", "type": "reinstall"}]
        }

        await monitor.poll_once()

        assert [call.args[0] for call in executor.execute.await_args_list] == [
            Intervention("1", "restart"),
            Intervention("2", "reinstall"),
        ]

    async def test_exit_stops_processing(self, monitor, client, executor):
        client.send_heartbeat.return_value = {
            "interventions": [{"id": "1", "type": "reinstall"}, {"id": "2", "type": "restart"}]
        }
        executor.execute.return_value = InterventionResult.EXIT

        assert await monitor.poll_once() is InterventionResult.EXIT
        assert executor.execute.await_count == 1


class TestReportStatus:
    async def test_uses_cached_token(self, monitor, client):
        await monitor._report_status("5", "executed", None)
        client.update_intervention_status.assert_awaited_once_with("jwt", "5", "executed", None)

    async def test_errors_are_logged_not_raised(self, monitor, client, mock_logger):
        client.update_intervention_status.side_effect = OrchestratorError("boom")

        await monitor._report_status("5", "failed", "oops")

        mock_logger.error.assert_called_once()

    async def test_without_token(self, monitor, client, authenticator):
        authenticator.token = None

        await monitor._report_status("5", "executed", None)

        client.update_intervention_status.assert_not_awaited()


class TestRun:
    async def test_run_stops_on_exit_result_and_closes_client(self, monitor, client, executor):
        client.send_heartbeat.return_value = {"interventions": [{"id": "1", "type": "reinstall"}]}
        executor.execute.return_value = InterventionResult.EXIT

        await monitor.run()

        client.close.assert_awaited_once()

    async def test_run_paces_with_poll_interval(self, monitor, client):
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            if len(sleeps) == 3:
                monitor.stop()

        monitor._sleep = fake_sleep

        await monitor.run()

        assert sleeps == [10.0, 10.0, 10.0]
        assert client.send_heartbeat.await_count == 3

    async def test_stop_interrupts_real_pause(self, monitor):
        monitor._sleep = None
        monitor.stop()

        await monitor._pause(3600)


def test_main_requires_device_identity(tmp_path):
    """Without DEVICE_ID / DEVICE_PRIVATE_KEY the monitor exits with status 1."""
    with patch.dict("os.environ", {"KIN_WRAPPER_DIR": str(tmp_path)}, clear=True):
        assert main([]) == 1
