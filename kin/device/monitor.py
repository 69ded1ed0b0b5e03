"""Kin device monitor.

Background process that keeps the orchestrator informed about the device and
carries out remote interventions:

- polls ``/device/heartbeat`` every poll interval (10 s by default);
- attaches the launcher's recent journal lines and host metrics once per log
  interval (60 s by default);
- executes ``restart`` and ``reinstall`` interventions from the response.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import time
from collections.abc import Awaitable, Callable
from typing import Any

from kin import systemd_notify
from kin.config import ConfigError, MonitorConfig, WrapperPaths, load_wrapper_env

from .auth import DeviceAuthenticator
from .interventions import InterventionExecutor, InterventionResult, parse_interventions
from .journal import recent_logs
from .metrics import MetricsCollector
from .orchestrator import OrchestratorAuthError, OrchestratorClient, OrchestratorError

LOGGER = logging.getLogger("device-monitor")
LOG_FORMAT = "[%(name)s] [%(levelname)s] %(message)s"


class DeviceMonitor:
    """Heartbeat / intervention poll loop."""

    def __init__(
        self,
        config: MonitorConfig,
        *,
        client: OrchestratorClient | None = None,
        authenticator: DeviceAuthenticator | None = None,
        metrics: MetricsCollector | None = None,
        executor: InterventionExecutor | None = None,
        log_reader: Callable[[str, int], str] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self.client = client or OrchestratorClient(config.http_base_url, timeout=config.request_timeout)
        self.auth = authenticator or DeviceAuthenticator(
            self.client,
            config.device_id,
            config.private_key,
            refresh_buffer=config.token_refresh_buffer,
            logger=self._logger,
        )
        self.metrics = metrics or MetricsCollector(connectivity_host=config.connectivity_host, logger=self._logger)
        self.executor = executor or InterventionExecutor(
            service_name=config.service_name,
            reinstall_script=config.paths.reinstall_script,
            reinstall_log=config.paths.reinstall_log,
            report=self._report_status,
            logger=self._logger,
        )
        self._log_reader = log_reader or (lambda service, lines: recent_logs(service, lines))
        self._clock = clock
        self._sleep = sleep
        self._last_log_send: float | None = None
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> None:
        self._logger.info("Device Monitor starting...")
        self._logger.info("Device ID: %s", self.config.device_id)
        self._logger.info("Orchestrator URL: %s", self.config.http_base_url)
        systemd_notify.ready("Starting monitor loop")
        self._logger.info("Starting monitor loop...")
        try:
            while not self.stopped:
                result = await self.poll_once()
                if result is InterventionResult.EXIT:
                    self._logger.info("Exiting monitor; the reinstall will start a new one")
                    break
                systemd_notify.watchdog()
                await self._pause(self.config.poll_interval)
        finally:
            systemd_notify.stopping()
            await self.client.close()

    async def poll_once(self) -> InterventionResult:
        """One loop iteration: token, heartbeat, interventions."""
        try:
            token = await self.auth.ensure_token()
        except OrchestratorError as exc:
            self._logger.error(
                "Authentication failed (%s), retrying in %s seconds...",
                exc,
                _format_seconds(self.config.poll_interval),
            )
            return InterventionResult.CONTINUE

        logs, metrics = await self._collect_attachments()
        try:
            response = await self.client.send_heartbeat(token, logs=logs, metrics=metrics)
        except OrchestratorAuthError as exc:
            self._logger.error("Heartbeat rejected, re-authenticating next poll: %s", exc)
            self.auth.invalidate()
            return InterventionResult.CONTINUE
        except OrchestratorError as exc:
            self._logger.error("Heartbeat request failed: %s", exc)
            return InterventionResult.CONTINUE

        if response is None:
            self._logger.error("Empty heartbeat response")
            return InterventionResult.CONTINUE

        for intervention in parse_interventions(response):
            result = await self.executor.execute(intervention)
            if result is InterventionResult.EXIT:
                return result
        return InterventionResult.CONTINUE

    async def _collect_attachments(self) -> tuple[str | None, dict[str, Any] | None]:
        now = self._clock()
        due = self._last_log_send is None or now - self._last_log_send >= self.config.log_interval
        if not due:
            return None, None
        self._last_log_send = now
        logs = await asyncio.to_thread(self._log_reader, self.config.service_name, self.config.log_lines)
        try:
            metrics: dict[str, Any] | None = await asyncio.to_thread(self.metrics.collect)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.warning("Metrics collection failed: %s", exc)
            metrics = None
        return logs, metrics

    async def _report_status(self, intervention_id: str, status: str, error_message: str | None) -> None:
        token = self.auth.token
        if token is None:
            self._logger.error("No token available to report intervention %s status", intervention_id)
            return
        try:
            await self.client.update_intervention_status(token.value, intervention_id, status, error_message)
        except OrchestratorError as exc:
            self._logger.error("Failed to update intervention %s status to %s: %s", intervention_id, status, exc)

    async def _pause(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)


def _format_seconds(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


async def _run(args: argparse.Namespace) -> int:
    paths = WrapperPaths.from_env()
    env = load_wrapper_env(paths)
    try:
        config = MonitorConfig.from_env(env, paths=paths)
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        return 1
    if args.once:
        monitor = DeviceMonitor(config)
        try:
            await monitor.poll_once()
        finally:
            await monitor.client.close()
        return 0

    monitor = DeviceMonitor(config)
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        monitor.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    await monitor.run()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send device heartbeats and execute remote interventions.")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--once", action="store_true", help="Run a single heartbeat iteration and exit.")
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format=LOG_FORMAT)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
