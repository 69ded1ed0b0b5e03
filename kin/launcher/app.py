"""Kin agent launcher.

Runs on boot (as the ``agent-launcher`` service) to bring up the Raspberry Pi
client:

1. wait for an internet connection;
2. clone or hard-sync the client repository;
3. create the client virtualenv;
4. install the client requirements;
5. check that the client ``.env`` exists;
6. optionally start the device monitor in the background;
7. run ``main.py`` forever, restarting it after exits and after long idle
   periods, pulling updates before every restart.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import subprocess  # nosec B404 - background device monitor
import sys
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path

import psutil

from kin import systemd_notify
from kin.commands import CommandError, Runner, run
from kin.config import LauncherConfig, WrapperPaths, load_wrapper_env
from kin.connectivity import has_internet, wait_for_internet

from .repo import ClientRepository
from .supervisor import ActivityTracker, ClientSupervisor, RunOutcome, describe_duration
from .venv import ClientVirtualenv, MissingRequirementsError

LOGGER = logging.getLogger("agent-launcher")
LOG_FORMAT = "[%(name)s] [%(levelname)s] %(message)s"
SEPARATOR = "=" * 41


class LauncherError(RuntimeError):
    """A condition that stops the launcher (systemd restarts the service)."""


def _pid_alive(pid: int) -> bool:
    """True for a running process; exited children are reaped, zombies count as dead."""
    if pid <= 0:
        return False
    try:
        os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        pass
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


def start_device_monitor(pid_file: Path, *, logger: logging.Logger | None = None) -> int | None:
    """Launch the device monitor in the background unless one is already running."""
    log = logger or LOGGER
    try:
        existing = int(pid_file.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        existing = None
    if existing and _pid_alive(existing):
        log.info("Device monitor already running (PID: %d)", existing)
        return existing
    proc = subprocess.Popen(  # nosec B603 - fixed interpreter and module
        [sys.executable, "-m", "kin.device.monitor"],
        stdin=subprocess.DEVNULL,
        start_new_session=True,
    )
    pid_file.write_text(f"{proc.pid}\n", encoding="utf-8")
    log.info("Device monitor started (PID: %d)", proc.pid)
    return proc.pid


class AgentLauncher:
    def __init__(
        self,
        config: LauncherConfig,
        *,
        env: Mapping[str, str] | None = None,
        runner: Runner = run,
        internet_probe: Callable[[str], bool] | None = None,
        repo: ClientRepository | None = None,
        venv: ClientVirtualenv | None = None,
        supervisor: ClientSupervisor | None = None,
        monitor_starter: Callable[[Path], object] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.paths = config.paths
        self._logger = logger or LOGGER
        self._runner = runner
        self._internet_probe = internet_probe or (lambda host: has_internet(host, runner=runner))
        self.repo = repo or ClientRepository(
            self.paths.client_dir,
            config.repo_url,
            config.branch,
            runner=runner,
            logger=self._logger,
        )
        self.venv = venv or ClientVirtualenv(
            self.paths.venv_dir,
            self.paths.client_dir,
            runner=runner,
            logger=self._logger,
        )
        self.supervisor = supervisor or ClientSupervisor(
            [str(self.venv.python), "main.py"],
            cwd=self.paths.client_dir,
            env=env,
            activity=ActivityTracker(self.paths.activity_file),
            idle_timeout=config.idle_timeout,
            check_interval=config.idle_check_interval,
            term_grace_seconds=config.term_grace_seconds,
            logger=self._logger,
        )
        self._monitor_starter = monitor_starter or (lambda pid_file: start_device_monitor(pid_file, logger=self._logger))
        self._sleep = sleep

    def prepare(self) -> None:
        """Steps 1-6. Raises :class:`LauncherError` on a fatal condition."""
        self._logger.info("Starting Kin AI Agent Launcher...")

        self._logger.info("Checking internet connection...")
        connected = wait_for_internet(
            host=self.config.connectivity_host,
            retries=self.config.internet_retries,
            delay=self.config.internet_retry_delay,
            probe=self._internet_probe,
            logger=self._logger,
        )
        if not connected:
            raise LauncherError(f"No internet connection after {self.config.internet_retries} attempts. Exiting.")
        self._logger.info("Internet connection established")

        try:
            self.repo.sync()
        except CommandError as exc:
            raise LauncherError(f"Unable to sync client repository: {exc}") from exc

        self._logger.info("Setting up Python virtual environment...")
        try:
            self.venv.ensure()
            self._logger.info("Installing Python requirements...")
            self.venv.install_requirements()
        except MissingRequirementsError as exc:
            raise LauncherError(str(exc)) from exc
        except CommandError as exc:
            raise LauncherError(f"Unable to prepare the virtual environment: {exc}") from exc

        if not self.paths.client_env.is_file():
            raise LauncherError(
                f".env file not found in {self.paths.client_dir}; "
                "create it with the required configuration (see ../.env.example or README.md)"
            )
        self._logger.info("Configuration file found")

        if self.config.start_device_monitor:
            try:
                self._monitor_starter(self.paths.monitor_pid_file)
            except OSError as exc:
                self._logger.error("Unable to start device monitor: %s", exc)

    async def supervise(self) -> None:
        """Step 7: run the client until a stop is requested."""
        self._logger.info("Starting Kin AI client with idle-time monitoring...")
        self._logger.info(
            "Will restart after %s of inactivity for updates",
            describe_duration(self.config.idle_timeout),
        )
        self._logger.info(SEPARATOR)
        systemd_notify.ready("Supervising client")
        while not self.supervisor.stop_requested:
            outcome = await self.supervisor.run_once()
            if self.supervisor.stop_requested:
                break
            await self._pause_after(outcome)
            await asyncio.to_thread(self.apply_updates)

    async def _pause_after(self, outcome: RunOutcome) -> None:
        if outcome.crashed:
            self._logger.error(
                "main.py exited with code %s, restarting in %s seconds...",
                outcome.returncode,
                f"{self.config.crash_restart_delay:g}",
            )
            await self._sleep(self.config.crash_restart_delay)
        else:
            self._logger.info("main.py stopped, restarting...")
            await self._sleep(self.config.restart_delay)

    def apply_updates(self) -> bool:
        """Pull and reinstall requirements if the branch moved. Returns True on update."""
        self._logger.info("Checking for updates before restart...")
        if not self.repo.update_available():
            self._logger.info("Already up to date")
            return False
        self._logger.info("Updates found, pulling latest changes...")
        try:
            self.repo.fast_forward()
            self.venv.install_requirements(upgrade_pip=False)
        except (CommandError, MissingRequirementsError) as exc:
            self._logger.error("Failed to apply updates: %s", exc)
            return False
        self._logger.info("Updates applied")
        return True

    def request_stop(self) -> None:
        self.supervisor.request_stop()


async def _run(launcher: AgentLauncher) -> int:
    try:
        await asyncio.to_thread(launcher.prepare)
    except LauncherError as exc:
        LOGGER.error("%s", exc)
        return 1

    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, stopping client", signum)
        systemd_notify.stopping()
        launcher.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    await launcher.supervise()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sync, set up and supervise the Kin Raspberry Pi client.")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format=LOG_FORMAT)

    paths = WrapperPaths.from_env()
    # Only the wrapper .env: the client's is checked, not loaded. The same
    # layered environment is exported to main.py.
    env = load_wrapper_env(paths, include_client=False)
    config = LauncherConfig.from_env(env, paths=paths)
    os.chdir(paths.wrapper_dir)
    try:
        return asyncio.run(_run(AgentLauncher(config, env=env)))
    except KeyboardInterrupt:
        return 0
