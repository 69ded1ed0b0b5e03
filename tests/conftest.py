"""Shared test fixtures and configuration for the Kin wrapper test suite.

This module provides reusable fixtures for common test scenarios including:
- A scripted stand-in for external commands (git, nmcli, systemctl, ...)
- Wrapper paths rooted in a temporary directory
- Configuration objects
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from kin.commands import CommandError
from kin.config import LauncherConfig, MonitorConfig, WifiSetupConfig, WrapperPaths

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns a Mock with spec=logging.Logger to ensure only valid
    logger methods can be called.
    """
    return Mock(spec=logging.Logger)


# ============================================================================
# Command Runner Fixtures
# ============================================================================


class FakeRunner:
    """Scripted replacement for :func:`kin.commands.run`.

    Rules match on a command prefix and are tried in the order they were
    added; ``once=True`` rules are consumed by their first match. Commands
    with no matching rule succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.kwargs: list[dict[str, Any]] = []
        self._rules: list[dict[str, Any]] = []

    def add(
        self,
        prefix: Sequence[str],
        *,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        exc: Exception | None = None,
        once: bool = False,
    ) -> FakeRunner:
        self._rules.append(
            {
                "prefix": list(prefix),
                "stdout": stdout,
                "stderr": stderr,
                "returncode": returncode,
                "exc": exc,
                "once": once,
            }
        )
        return self

    def __call__(
        self,
        cmd: Sequence[str],
        *,
        check: bool = True,
        cwd: Any = None,
        env: Any = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        cmd = list(cmd)
        self.calls.append(cmd)
        self.kwargs.append({"check": check, "cwd": cwd, "env": env, "timeout": timeout})
        rule = self._match(cmd)
        if rule is None:
            return subprocess.CompletedProcess(cmd, 0, "", "")
        if rule["exc"] is not None:
            raise rule["exc"]
        if check and rule["returncode"] != 0:
            raise CommandError(cmd, rule["returncode"], rule["stderr"])
        return subprocess.CompletedProcess(cmd, rule["returncode"], rule["stdout"], rule["stderr"])

    def _match(self, cmd: list[str]) -> dict[str, Any] | None:
        for rule in self._rules:
            prefix = rule["prefix"]
            if cmd[: len(prefix)] == prefix:
                if rule["once"]:
                    self._rules.remove(rule)
                return rule
        return None

    def called_with(self, prefix: Sequence[str]) -> list[list[str]]:
        prefix = list(prefix)
        return [cmd for cmd in self.calls if cmd[: len(prefix)] == prefix]


@pytest.fixture
def fake_runner():
    """Create a FakeRunner with no rules (every command succeeds)."""
    return FakeRunner()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def wrapper_paths(tmp_path: Path) -> WrapperPaths:
    """Wrapper layout rooted in a temporary directory."""
    return WrapperPaths.from_env(
        {
            "KIN_WRAPPER_DIR": str(tmp_path / "kin-wrapper"),
            "KIN_REINSTALL_LOG": str(tmp_path / "reinstall.log"),
        }
    )


@pytest.fixture
def monitor_config(wrapper_paths: WrapperPaths) -> MonitorConfig:
    """Monitor configuration with a fixed device identity."""
    return MonitorConfig.from_env(
        {
            "DEVICE_ID": "device-123",
            "DEVICE_PRIVATE_KEY": "not-used-by-fakes",
            "CONVERSATION_ORCHESTRATOR_URL": "wss://orchestrator.test/ws",
        },
        paths=wrapper_paths,
    )


@pytest.fixture
def launcher_config(wrapper_paths: WrapperPaths) -> LauncherConfig:
    return LauncherConfig.from_env({"GIT_BRANCH": "main"}, paths=wrapper_paths)


@pytest.fixture
def wifi_config(wrapper_paths: WrapperPaths, tmp_path: Path) -> WifiSetupConfig:
    return WifiSetupConfig.from_env(
        {
            "KIN_PAIRING_CODE_FILE": str(tmp_path / "kin_pairing_code"),
            "KIN_SETUP_HTTP_PORT": "0",
            "KIN_SETUP_BIND_ADDRESS": "127.0.0.1",
        },
        paths=wrapper_paths,
    )
