"""Keep the client checkout on the configured branch."""

from __future__ import annotations

import logging
from pathlib import Path

from kin.commands import CommandError, Runner, run

LOGGER = logging.getLogger(__name__)


class ClientRepository:
    """Git operations on the client checkout."""

    def __init__(
        self,
        path: Path,
        url: str,
        branch: str = "main",
        *,
        runner: Runner = run,
        logger: logging.Logger | None = None,
    ) -> None:
        self.path = path
        self.url = url
        self.branch = branch
        self._runner = runner
        self._logger = logger or LOGGER

    @property
    def exists(self) -> bool:
        return self.path.is_dir()

    def _git(self, *args: str, check: bool = True, timeout: float | None = 300) -> str:
        result = self._runner(["git", *args], check=check, cwd=self.path, timeout=timeout)
        return (result.stdout or "").strip()

    def sync(self) -> None:
        """Clone when missing, otherwise hard-reset onto ``origin/<branch>``."""
        if not self.exists:
            self._logger.info("Repository not found. Cloning from %s...", self.url)
            self._runner(
                ["git", "clone", "-b", self.branch, self.url, str(self.path)],
                check=True,
                timeout=600,
            )
            self._logger.info("Repository cloned successfully")
            return

        self._logger.info("Repository found. Pulling latest changes...")
        try:
            # Local edits are not expected; keep them in the stash rather than losing them.
            self._git("stash", "--include-untracked")
        except CommandError as exc:
            self._logger.debug("git stash skipped: %s", exc)
        self._git("fetch", "origin", self.branch)
        self._git("reset", "--hard", f"origin/{self.branch}")
        self._logger.info("Repository updated to latest commit")

    def update_available(self) -> bool:
        """Fetch and report whether ``origin/<branch>`` moved past ``HEAD``."""
        try:
            self._git("fetch", "origin", self.branch)
        except CommandError as exc:
            self._logger.warning("git fetch failed, using last known remote state: %s", exc)
        try:
            local = self._git("rev-parse", "HEAD")
            remote = self._git("rev-parse", f"origin/{self.branch}")
        except CommandError as exc:
            self._logger.warning("Unable to compare revisions: %s", exc)
            return False
        return bool(local and remote) and local != remote

    def fast_forward(self) -> None:
        self._git("reset", "--hard", f"origin/{self.branch}")
