"""Virtual environment for the client."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from kin.commands import Runner, run

LOGGER = logging.getLogger(__name__)


class MissingRequirementsError(FileNotFoundError):
    pass


class ClientVirtualenv:
    def __init__(
        self,
        venv_dir: Path,
        project_dir: Path,
        *,
        python: str = sys.executable or "python3",
        runner: Runner = run,
        logger: logging.Logger | None = None,
    ) -> None:
        self.venv_dir = venv_dir
        self.project_dir = project_dir
        self._python = python
        self._runner = runner
        self._logger = logger or LOGGER

    @property
    def python(self) -> Path:
        return self.venv_dir / "bin" / "python"

    @property
    def pip(self) -> Path:
        return self.venv_dir / "bin" / "pip"

    @property
    def requirements(self) -> Path:
        return self.project_dir / "requirements.txt"

    def ensure(self) -> bool:
        """Create the venv when missing. Returns True if it was created."""
        if self.venv_dir.is_dir():
            self._logger.info("Virtual environment already exists")
            return False
        self._logger.info("Creating virtual environment...")
        self._runner([self._python, "-m", "venv", str(self.venv_dir)], check=True, timeout=300)
        self._logger.info("Virtual environment created")
        return True

    def install_requirements(self, *, upgrade_pip: bool = True) -> None:
        if not self.requirements.is_file():
            raise MissingRequirementsError(f"requirements.txt not found in {self.project_dir}")
        if upgrade_pip:
            self._runner([str(self.pip), "install", "--upgrade", "pip", "-q"], check=True, cwd=self.project_dir, timeout=900)
        self._runner(
            [str(self.pip), "install", "-r", str(self.requirements), "-q"],
            check=True,
            cwd=self.project_dir,
            timeout=1800,
        )
        self._logger.info("Requirements installed")
