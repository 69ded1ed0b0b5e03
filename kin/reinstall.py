"""Stop the launcher service, uninstall the wrapper and install it again."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from kin.commands import CommandError, Runner, make_executable, run, run_inherited, succeeds
from kin.config import DEFAULT_SERVICE_NAME, WrapperPaths, load_wrapper_env
from kin.utils import strip_or_none

LOGGER = logging.getLogger("reinstall")
LOG_FORMAT = "[%(name)s] [%(levelname)s] %(message)s"
BANNER = "=" * 41


class ReinstallError(RuntimeError):
    pass


class Reinstaller:
    def __init__(
        self,
        paths: WrapperPaths,
        *,
        service_name: str = DEFAULT_SERVICE_NAME,
        runner: Runner = run,
        script_runner: Runner = run_inherited,
        logger: logging.Logger | None = None,
    ) -> None:
        self.paths = paths
        self.service_name = service_name
        self._runner = runner
        self._script_runner = script_runner
        self._logger = logger or LOGGER

    def stop_service(self) -> bool:
        """Stop the launcher when it is running. Returns True if it was stopped."""
        self._logger.info("Stopping %s service...", self.service_name)
        if not succeeds(["systemctl", "is-active", "--quiet", self.service_name], runner=self._runner, timeout=10):
            self._logger.info("%s service not running", self.service_name)
            return False
        self._runner(["sudo", "systemctl", "stop", self.service_name], check=True, timeout=120)
        self._logger.info("%s service stopped", self.service_name)
        return True

    def _run_script(self, script: Path, *args: str) -> None:
        if not script.is_file():
            raise ReinstallError(f"{script.name} not found at {script}")
        make_executable(script)
        self._script_runner([str(script), *args], check=True, cwd=self.paths.wrapper_dir)

    def run(self) -> None:
        self.stop_service()

        self._logger.info("Running uninstall...")
        self._run_script(self.paths.uninstall_script, "--auto-yes")
        self._logger.info("Uninstall complete")

        self._logger.info("Running install...")
        self._run_script(self.paths.install_script)
        self._logger.info("Install complete")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reinstall the Kin client wrapper.")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format=LOG_FORMAT)

    paths = WrapperPaths.from_env()
    env = load_wrapper_env(paths, include_client=False)
    service = strip_or_none(env.get("KIN_SERVICE_NAME")) or DEFAULT_SERVICE_NAME

    LOGGER.info(BANNER)
    LOGGER.info("  Kin AI Client - Reinstaller")
    LOGGER.info(BANNER)
    try:
        Reinstaller(paths, service_name=service).run()
    except (ReinstallError, CommandError, OSError) as exc:
        LOGGER.error("%s", exc)
        return 1
    LOGGER.info(BANNER)
    LOGGER.info("Reinstall Complete!")
    LOGGER.info(BANNER)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
