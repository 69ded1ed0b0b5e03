"""Run external system utilities (git, systemctl, nmcli, journalctl, ...)."""

from __future__ import annotations

import logging
import stat
import subprocess  # nosec B404 - the wrapper exists to drive system utilities
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

_LOGGER = logging.getLogger("kin.commands")


class CommandError(RuntimeError):
    """An external command failed or could not be started."""

    def __init__(self, cmd: Sequence[str], returncode: int | None, stderr: str = "") -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f" (exit code {returncode})" if returncode is not None else ""
        message = f"{' '.join(self.cmd)} failed{detail}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class CommandTimeout(CommandError):
    """The command did not finish within its timeout."""


Runner = Callable[..., subprocess.CompletedProcess[str]]


def run(
    cmd: Sequence[str],
    *,
    check: bool = True,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``cmd`` capturing text output.

    With ``check=True`` a non-zero exit, a missing binary or a timeout raises
    :class:`CommandError`; with ``check=False`` the first still returns the
    completed process and the other two raise.
    """
    _LOGGER.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(  # nosec B603 - argument list, no shell
            list(cmd),
            capture_output=True,
            text=True,
            check=False,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise CommandError(cmd, None, str(exc)) from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandTimeout(cmd, None, f"timed out after {timeout}s") from exc
    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stderr or "")
    return result


def run_inherited(
    cmd: Sequence[str],
    *,
    check: bool = True,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``cmd`` attached to this process's stdin, stdout and stderr.

    For interactive or long-running scripts whose output belongs to the
    operator (or to the log file the caller was started with). Errors are
    raised as in :func:`run`, without stderr detail.
    """
    _LOGGER.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(  # nosec B603 - argument list, no shell
            list(cmd),
            check=False,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise CommandError(cmd, None, str(exc)) from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandTimeout(cmd, None, f"timed out after {timeout}s") from exc
    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode)
    return result


def succeeds(cmd: Sequence[str], *, runner: Runner = run, timeout: float | None = None) -> bool:
    """True when ``cmd`` exits 0; missing binaries and timeouts count as failure."""
    try:
        return runner(cmd, check=False, timeout=timeout).returncode == 0
    except CommandError:
        return False


def output_or_none(cmd: Sequence[str], *, runner: Runner = run, timeout: float | None = None) -> str | None:
    """Stdout of a successful ``cmd``; ``None`` on any failure."""
    try:
        result = runner(cmd, check=False, timeout=timeout)
    except CommandError as exc:
        _LOGGER.debug("%s", exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def make_executable(path: Path) -> None:
    """``chmod +x``."""
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
