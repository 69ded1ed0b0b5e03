"""Remote interventions requested through the heartbeat response."""

from __future__ import annotations

import asyncio
import logging
import subprocess  # nosec B404 - detached reinstall process
import sys
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from kin.commands import CommandError, Runner, make_executable, run

StatusReporter = Callable[[str, str, str | None], Awaitable[None]]
Spawner = Callable[[Sequence[str], Path], None]

RESTART = "restart"
REINSTALL = "reinstall"


class InterventionResult(Enum):
    CONTINUE = "continue"
    # The monitor must exit; a reinstall brings up a fresh one.
    EXIT = "exit"


@dataclass(frozen=True)
class Intervention:
    id: str
    type: str


def parse_interventions(payload: Any) -> list[Intervention]:
    """Pending interventions from a heartbeat response, in response order.

    Entries without both an ``id`` and a ``type`` are dropped; any other shape
    yields an empty list.
    """
    if not isinstance(payload, dict):
        return []
    items = payload.get("interventions")
    if not isinstance(items, list):
        return []
    interventions: list[Intervention] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        intervention_id = item.get("id")
        intervention_type = item.get("type")
        if intervention_id in (None, "") or not intervention_type:
            continue
        interventions.append(Intervention(id=str(intervention_id), type=str(intervention_type)))
    return interventions


def spawn_detached(cmd: Sequence[str], log_path: Path) -> None:
    """Start ``cmd`` in its own session so it outlives the monitor."""
    with open(log_path, "ab") as log_handle:
        subprocess.Popen(  # nosec B603 - fixed command
            list(cmd),
            stdin=subprocess.DEVNULL,
            stdout=log_handle,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            close_fds=True,
        )


class InterventionExecutor:
    """Run interventions and report their status back to the orchestrator."""

    def __init__(
        self,
        *,
        service_name: str,
        reinstall_script: Path,
        reinstall_log: Path,
        report: StatusReporter,
        runner: Runner = run,
        spawner: Spawner = spawn_detached,
        settle_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._service_name = service_name
        self._reinstall_script = reinstall_script
        self._reinstall_log = reinstall_log
        self._report = report
        self._runner = runner
        self._spawner = spawner
        self._settle_delay = settle_delay
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    async def execute(self, intervention: Intervention) -> InterventionResult:
        self._logger.info("Executing intervention: %s (ID: %s)", intervention.type, intervention.id)
        if intervention.type == RESTART:
            return await self._restart(intervention)
        if intervention.type == REINSTALL:
            return await self._reinstall(intervention)
        message = f"Unknown intervention type: {intervention.type}"
        await self._report(intervention.id, "failed", message)
        self._logger.error(message)
        return InterventionResult.CONTINUE

    async def _restart(self, intervention: Intervention) -> InterventionResult:
        self._logger.info("Restarting %s service...", self._service_name)
        # Report first: restarting the service normally kills this process.
        await self._report(intervention.id, "executed", None)
        self._logger.info("Intervention marked executed, restarting now...")
        await self._sleep(self._settle_delay)
        cmd = ["sudo", "systemctl", "restart", self._service_name]
        try:
            await asyncio.to_thread(self._runner, cmd, check=True, timeout=60)
        except CommandError as exc:
            message = f"Failed to restart service: {exc}"
            self._logger.error(message)
            await self._report(intervention.id, "failed", message)
            return InterventionResult.CONTINUE
        self._logger.info("Service restarted successfully")
        return InterventionResult.CONTINUE

    def _reinstall_command(self) -> list[str]:
        """``reinstall.sh`` when the checkout ships one, else the bundled reinstaller."""
        script = self._reinstall_script
        if script.is_file():
            make_executable(script)
            return [str(script)]
        self._logger.info("reinstall.sh not found at %s, using kin.reinstall", script)
        return [sys.executable, "-m", "kin.reinstall"]

    async def _reinstall(self, intervention: Intervention) -> InterventionResult:
        self._logger.info("Running reinstall...")
        # The reinstall stops the launcher service, which takes this monitor down with it.
        await self._report(intervention.id, "executed", None)
        self._logger.info("Intervention marked executed, reinstalling now...")
        await self._sleep(self._settle_delay)
        try:
            self._spawner(self._reinstall_command(), self._reinstall_log)
        except OSError as exc:
            message = f"Failed to start reinstall: {exc}"
            self._logger.error(message)
            await self._report(intervention.id, "failed", message)
            return InterventionResult.CONTINUE
        self._logger.info("Reinstall started in background (see %s)", self._reinstall_log)
        return InterventionResult.EXIT

