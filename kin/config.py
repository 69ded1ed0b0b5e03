"""Configuration helpers for the Kin device wrapper."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from kin.env_file import layered_env
from kin.utils import parse_bool, parse_float, parse_int, strip_or_none

DEFAULT_ORCHESTRATOR_URL = "wss://conversation-orchestrator.onrender.com/ws"
DEFAULT_CLIENT_REPO_URL = "https://github.com/companionsand/raspberry-pi-client.git"
DEFAULT_SERVICE_NAME = "agent-launcher"
CLIENT_DIR_NAME = "raspberry-pi-client"


class ConfigError(ValueError):
    """Raised when a required setting is missing."""


def default_wrapper_dir() -> Path:
    """The checkout that holds ``.env``, ``install.sh`` and the client repo."""
    return Path(__file__).resolve().parents[1]


def orchestrator_http_url(url: str) -> str:
    """Map the orchestrator WebSocket URL onto its HTTP base URL."""
    trimmed = url.strip()
    if trimmed.startswith("wss://"):
        trimmed = "https://" + trimmed[len("wss://") :]
    elif trimmed.startswith("ws://"):
        trimmed = "http://" + trimmed[len("ws://") :]
    if trimmed.endswith("/ws"):
        trimmed = trimmed[: -len("/ws")]
    return trimmed.rstrip("/")


@dataclass(frozen=True)
class WrapperPaths:
    wrapper_dir: Path
    client_dir: Path
    venv_dir: Path
    activity_file: Path
    monitor_pid_file: Path
    install_script: Path
    uninstall_script: Path
    reinstall_script: Path
    reinstall_log: Path

    @property
    def wrapper_env(self) -> Path:
        return self.wrapper_dir / ".env"

    @property
    def client_env(self) -> Path:
        return self.client_dir / ".env"

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> WrapperPaths:
        source = os.environ if env is None else env
        wrapper_raw = strip_or_none(source.get("KIN_WRAPPER_DIR"))
        wrapper_dir = Path(wrapper_raw).expanduser() if wrapper_raw else default_wrapper_dir()
        client_dir = wrapper_dir / CLIENT_DIR_NAME
        return WrapperPaths(
            wrapper_dir=wrapper_dir,
            client_dir=client_dir,
            venv_dir=client_dir / "venv",
            activity_file=wrapper_dir / ".last_activity",
            monitor_pid_file=wrapper_dir / ".device_monitor.pid",
            install_script=wrapper_dir / "install.sh",
            uninstall_script=wrapper_dir / "uninstall.sh",
            reinstall_script=wrapper_dir / "reinstall.sh",
            reinstall_log=Path(source.get("KIN_REINSTALL_LOG") or "/tmp/reinstall.log"),
        )


def load_wrapper_env(paths: WrapperPaths, *, include_client: bool = True) -> dict[str, str]:
    """Layer the wrapper ``.env`` (and optionally the client's) over ``os.environ``."""
    files = [paths.wrapper_env]
    if include_client:
        files.append(paths.client_env)
    return layered_env(files)


@dataclass(frozen=True)
class MonitorConfig:
    device_id: str
    private_key: str
    orchestrator_url: str
    service_name: str
    poll_interval: float
    log_interval: float
    log_lines: int
    request_timeout: float
    token_refresh_buffer: int
    connectivity_host: str
    paths: WrapperPaths

    @property
    def http_base_url(self) -> str:
        return orchestrator_http_url(self.orchestrator_url)

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None, paths: WrapperPaths | None = None) -> MonitorConfig:
        source = os.environ if env is None else env
        device_id = strip_or_none(source.get("DEVICE_ID"))
        private_key = strip_or_none(source.get("DEVICE_PRIVATE_KEY"))
        if not device_id or not private_key:
            raise ConfigError("DEVICE_ID and DEVICE_PRIVATE_KEY must be set in .env")
        return MonitorConfig(
            device_id=device_id,
            private_key=private_key,
            orchestrator_url=strip_or_none(source.get("CONVERSATION_ORCHESTRATOR_URL")) or DEFAULT_ORCHESTRATOR_URL,
            service_name=strip_or_none(source.get("KIN_SERVICE_NAME")) or DEFAULT_SERVICE_NAME,
            poll_interval=max(1.0, parse_float(source.get("KIN_MONITOR_POLL_INTERVAL"), 10.0)),
            log_interval=max(0.0, parse_float(source.get("KIN_MONITOR_LOG_INTERVAL"), 60.0)),
            log_lines=max(1, parse_int(source.get("KIN_MONITOR_LOG_LINES"), 100)),
            request_timeout=max(1.0, parse_float(source.get("KIN_MONITOR_HTTP_TIMEOUT"), 15.0)),
            token_refresh_buffer=max(0, parse_int(source.get("KIN_TOKEN_REFRESH_BUFFER"), 300)),
            connectivity_host=strip_or_none(source.get("KIN_CONNECTIVITY_HOST")) or "8.8.8.8",
            paths=paths or WrapperPaths.from_env(source),
        )


@dataclass(frozen=True)
class LauncherConfig:
    repo_url: str
    branch: str
    service_name: str
    internet_retries: int
    internet_retry_delay: float
    connectivity_host: str
    idle_timeout: float
    idle_check_interval: float
    term_grace_seconds: float
    crash_restart_delay: float
    restart_delay: float
    start_device_monitor: bool
    paths: WrapperPaths

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None, paths: WrapperPaths | None = None) -> LauncherConfig:
        source = os.environ if env is None else env
        return LauncherConfig(
            repo_url=strip_or_none(source.get("KIN_CLIENT_REPO_URL")) or DEFAULT_CLIENT_REPO_URL,
            branch=strip_or_none(source.get("GIT_BRANCH")) or "main",
            service_name=strip_or_none(source.get("KIN_SERVICE_NAME")) or DEFAULT_SERVICE_NAME,
            internet_retries=max(1, parse_int(source.get("KIN_INTERNET_RETRIES"), 30)),
            internet_retry_delay=max(0.0, parse_float(source.get("KIN_INTERNET_RETRY_DELAY"), 2.0)),
            connectivity_host=strip_or_none(source.get("KIN_CONNECTIVITY_HOST")) or "8.8.8.8",
            idle_timeout=max(1.0, parse_float(source.get("KIN_IDLE_TIMEOUT"), 10800.0)),
            idle_check_interval=max(1.0, parse_float(source.get("KIN_IDLE_CHECK_INTERVAL"), 60.0)),
            term_grace_seconds=5.0,
            crash_restart_delay=5.0,
            restart_delay=2.0,
            start_device_monitor=parse_bool(source.get("KIN_START_DEVICE_MONITOR"), False),
            paths=paths or WrapperPaths.from_env(source),
        )


@dataclass(frozen=True)
class WifiSetupConfig:
    ap_ssid: str
    interface: str
    hotspot_name: str
    hotspot_address: str
    http_port: int
    bind_address: str
    setup_dir: Path
    pairing_code_file: Path
    max_retries: int
    poll_interval: float
    connect_checks: int
    connect_check_interval: float
    connectivity_host: str

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None, paths: WrapperPaths | None = None) -> WifiSetupConfig:
        source = os.environ if env is None else env
        wrapper = paths or WrapperPaths.from_env(source)
        return WifiSetupConfig(
            ap_ssid=strip_or_none(source.get("KIN_AP_SSID")) or "Kin_Setup",
            interface=strip_or_none(source.get("KIN_AP_INTERFACE")) or "wlan0",
            hotspot_name="Kin_Hotspot",
            hotspot_address="192.168.4.1/24",
            http_port=parse_int(source.get("KIN_SETUP_HTTP_PORT"), 80),
            bind_address=source.get("KIN_SETUP_BIND_ADDRESS", ""),
            setup_dir=wrapper.wrapper_dir / "wifi-setup",
            pairing_code_file=Path(source.get("KIN_PAIRING_CODE_FILE") or "/tmp/kin_pairing_code"),
            max_retries=max(1, parse_int(source.get("KIN_WIFI_MAX_RETRIES"), 5)),
            poll_interval=5.0,
            connect_checks=6,
            connect_check_interval=5.0,
            connectivity_host=strip_or_none(source.get("KIN_CONNECTIVITY_HOST")) or "8.8.8.8",
        )
