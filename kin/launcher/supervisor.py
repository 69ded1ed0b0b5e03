"""Run the client process with restart-on-exit and idle-restart logic.

The client touches the activity file whenever something happens (a wake word,
a conversation). When the file has not been touched for ``idle_timeout``
seconds the client is stopped so the launcher can pull updates and start a
fresh process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from kin import systemd_notify

LOGGER = logging.getLogger(__name__)

# Exit statuses that mean "stopped by a signal we sent", as reported by Python
# (negative signal number) and by a shell wrapper (128 + signal number).
_SIGNAL_EXIT_CODES = frozenset({-signal.SIGTERM, -signal.SIGKILL, 128 + signal.SIGTERM, 128 + signal.SIGKILL})


def is_crash(returncode: int | None) -> bool:
    """A non-zero exit that was not caused by SIGTERM/SIGKILL."""
    if returncode is None:
        return False
    return returncode != 0 and returncode not in _SIGNAL_EXIT_CODES


class ActivityTracker:
    """Idle detection based on the activity file's modification time."""

    def __init__(self, path: Path, *, clock: Callable[[], float] = time.time) -> None:
        self.path = path
        self._clock = clock

    def touch(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch()
        # touch() leaves the mtime alone on some filesystems when the file exists
        now = self._clock()
        with contextlib.suppress(OSError):
            os.utime(self.path, (now, now))

    def idle_seconds(self) -> float | None:
        """Seconds since the last recorded activity, or None when unknown."""
        try:
            mtime = self.path.stat().st_mtime
        except OSError:
            return None
        return max(0.0, self._clock() - mtime)

    def is_idle(self, timeout: float) -> bool:
        idle = self.idle_seconds()
        return idle is not None and idle >= timeout


@dataclass(frozen=True)
class RunOutcome:
    returncode: int | None
    reason: str  # "exited", "idle" or "stopped"

    @property
    def crashed(self) -> bool:
        return self.reason == "exited" and is_crash(self.returncode)


ProcessFactory = Callable[..., Awaitable[asyncio.subprocess.Process]]


class ClientSupervisor:
    """Start the client, watch it, and stop it on idle timeout or shutdown."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        activity: ActivityTracker,
        idle_timeout: float = 10800.0,
        check_interval: float = 60.0,
        term_grace_seconds: float = 5.0,
        env: Mapping[str, str] | None = None,
        process_factory: ProcessFactory = asyncio.create_subprocess_exec,
        logger: logging.Logger | None = None,
    ) -> None:
        self.command = list(command)
        self.cwd = cwd
        self.activity = activity
        self.idle_timeout = idle_timeout
        self.check_interval = check_interval
        self.term_grace_seconds = term_grace_seconds
        self._env = dict(os.environ if env is None else env)
        self._env["PYTHONUNBUFFERED"] = "1"
        self._process_factory = process_factory
        self._logger = logger or LOGGER
        self._stop_event = asyncio.Event()
        self._proc: asyncio.subprocess.Process | None = None

    def request_stop(self) -> None:
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def run_once(self) -> RunOutcome:
        """Start the client and return once it has exited or been stopped."""
        self._logger.info("Starting %s...", " ".join(self.command[1:]) or self.command[0])
        self.activity.touch()
        proc = await self._process_factory(*self.command, cwd=str(self.cwd), env=self._env)
        self._proc = proc
        self._logger.info("Client started (PID: %s)", proc.pid)
        systemd_notify.status(f"Client running (PID {proc.pid})")
        try:
            return await self._watch(proc)
        finally:
            self._proc = None

    async def _watch(self, proc: asyncio.subprocess.Process) -> RunOutcome:
        stop_wait = asyncio.create_task(self._stop_event.wait())
        try:
            while True:
                exit_wait = asyncio.create_task(proc.wait())
                done, _pending = await asyncio.wait(
                    {exit_wait, stop_wait},
                    timeout=self.check_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if exit_wait in done:
                    return RunOutcome(proc.returncode, "exited")
                exit_wait.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await exit_wait
                if stop_wait in done:
                    returncode = await self.terminate(proc)
                    return RunOutcome(returncode, "stopped")
                systemd_notify.watchdog()
                if self.activity.is_idle(self.idle_timeout):
                    self._logger.info(
                        "%s of idle time detected, restarting for updates...",
                        describe_duration(self.idle_timeout),
                    )
                    returncode = await self.terminate(proc)
                    return RunOutcome(returncode, "idle")
        finally:
            stop_wait.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stop_wait

    async def terminate(self, proc: asyncio.subprocess.Process) -> int | None:
        """SIGTERM, then SIGKILL after the grace period."""
        if proc.returncode is not None:
            return proc.returncode
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            return await asyncio.wait_for(proc.wait(), timeout=self.term_grace_seconds)
        except asyncio.TimeoutError:
            self._logger.warning("Client did not exit after SIGTERM, sending SIGKILL")
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        return await proc.wait()


def describe_duration(seconds: float) -> str:
    if seconds >= 3600 and seconds % 3600 == 0:
        hours = int(seconds // 3600)
        return f"{hours} hour{'s' if hours != 1 else ''}"
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"
